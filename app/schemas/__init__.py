"""
Schemas package

不做聚合导出，需要时从具体模块显式导入，例如：
    from app.schemas.item import ItemOut
    from app.schemas.inventory import AddItemIn
"""

__all__: list[str] = []
