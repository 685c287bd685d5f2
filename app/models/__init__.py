# app/models/__init__.py
"""
统一导出 ORM 模型。
"""

from importlib import import_module


def _export(module_name: str, class_name: str) -> None:
    module = import_module(module_name)
    globals()[class_name] = getattr(module, class_name)


MODEL_SPECS = [
    # -------- 主数据 --------
    ("app.models.category", "Category"),
    ("app.models.item", "Item"),
    ("app.models.location", "Location"),
    # -------- 条码池 / 计数器 --------
    ("app.models.sequence_counter", "SequenceCounter"),
    ("app.models.pool_barcode", "PoolBarcode"),
    # -------- 库存桶 / 单件 --------
    ("app.models.stock_aggregate", "StockAggregate"),
    ("app.models.unit", "Unit"),
]

for _module, _name in MODEL_SPECS:
    _export(_module, _name)

__all__ = [
    "Category",
    "Item",
    "Location",
    "SequenceCounter",
    "PoolBarcode",
    "StockAggregate",
    "Unit",
]
