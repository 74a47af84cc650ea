"""
统一的 Schema 描述模型

由外部 Schema 发现模块提供，示例排序、SQL 校验和提示词构建共用同一格式。

设计原则：
1. 表名作为键，便于按表查找
2. 列保留顺序（与数据库定义一致）
3. 提供便捷的查询方法
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ColumnInfo(BaseModel):
    """列信息"""
    name: str = Field(..., description="列名")
    data_type: str = Field(default="text", description="数据类型")
    nullable: bool = Field(default=True, description="是否允许为空")
    is_primary_key: bool = Field(default=False, description="是否主键")
    is_foreign_key: bool = Field(default=False, description="是否外键")

    class Config:
        extra = "ignore"


class ForeignKeyInfo(BaseModel):
    """外键信息"""
    column: str = Field(..., description="本表列名")
    referenced_table: str = Field(..., description="引用表名")
    referenced_column: str = Field(..., description="引用列名")

    class Config:
        extra = "ignore"


class TableSchema(BaseModel):
    """表结构"""
    columns: List[ColumnInfo] = Field(default_factory=list, description="列列表（有序）")
    primary_keys: List[str] = Field(default_factory=list, description="主键列")
    foreign_keys: List[ForeignKeyInfo] = Field(default_factory=list, description="外键列表")
    row_count: Optional[int] = Field(default=None, description="行数（可选）")

    class Config:
        extra = "ignore"

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def has_column(self, column: str) -> bool:
        column_lower = column.lower()
        return any(c.name.lower() == column_lower for c in self.columns)


class RelationshipInfo(BaseModel):
    """跨表关系"""
    table: str = Field(..., description="源表名")
    column: str = Field(..., description="源列名")
    referenced_table: str = Field(..., description="目标表名")
    referenced_column: str = Field(..., description="目标列名")

    class Config:
        extra = "ignore"


class SchemaDescription(BaseModel):
    """
    数据库 Schema 描述

    所有模块间传递 Schema 信息时使用此格式。
    """
    tables: Dict[str, TableSchema] = Field(default_factory=dict, description="表名 -> 表结构")
    relationships: List[RelationshipInfo] = Field(default_factory=list, description="关系列表")

    class Config:
        extra = "ignore"

    # ========================================
    # 便捷属性
    # ========================================

    @property
    def table_names(self) -> List[str]:
        """获取所有表名"""
        return list(self.tables.keys())

    def has_table(self, table_name: str) -> bool:
        return table_name in self.tables

    def get_table(self, table_name: str) -> Optional[TableSchema]:
        return self.tables.get(table_name)

    def find_table_for_column(self, column: str) -> Optional[str]:
        """查找包含指定列的第一个表"""
        for table_name, table in self.tables.items():
            if table.has_column(column):
                return table_name
        return None
