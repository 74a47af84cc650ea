#!/usr/bin/env python3
"""
命令行演示入口

使用方式:
    python -m nlsql.main "how many customers do we have"
    python -m nlsql.main "top 5 products by revenue" --ensemble --dialect postgresql

未配置任何 API Key 时只有规则兜底后端可用。
"""

import argparse
import asyncio
import logging

from nlsql.core.context import AppContext
from nlsql.core.exceptions import NLSQLError
from nlsql.schemas.schema_context import ColumnInfo, ForeignKeyInfo, SchemaDescription, TableSchema
from nlsql.schemas.text2sql import Text2SQLRequest
from nlsql.services.text2sql_service import Text2SQLService


def demo_schema() -> SchemaDescription:
    """演示用电商 Schema"""
    return SchemaDescription(tables={
        "customers": TableSchema(
            columns=[
                ColumnInfo(name="id", data_type="integer", nullable=False, is_primary_key=True),
                ColumnInfo(name="name", data_type="varchar"),
                ColumnInfo(name="email", data_type="varchar"),
                ColumnInfo(name="city", data_type="varchar"),
                ColumnInfo(name="created_at", data_type="timestamp"),
            ],
            primary_keys=["id"],
            row_count=5000,
        ),
        "orders": TableSchema(
            columns=[
                ColumnInfo(name="id", data_type="integer", nullable=False, is_primary_key=True),
                ColumnInfo(name="customer_id", data_type="integer", is_foreign_key=True),
                ColumnInfo(name="total_amount", data_type="numeric"),
                ColumnInfo(name="order_date", data_type="date"),
            ],
            primary_keys=["id"],
            foreign_keys=[ForeignKeyInfo(column="customer_id", referenced_table="customers", referenced_column="id")],
            row_count=20000,
        ),
        "products": TableSchema(
            columns=[
                ColumnInfo(name="id", data_type="integer", nullable=False, is_primary_key=True),
                ColumnInfo(name="name", data_type="varchar"),
                ColumnInfo(name="category", data_type="varchar"),
                ColumnInfo(name="price", data_type="numeric"),
            ],
            primary_keys=["id"],
            row_count=300,
        ),
    })


async def main():
    """主函数"""
    parser = argparse.ArgumentParser(description='自然语言转 SQL 演示')
    parser.add_argument('query', help='自然语言问题')
    parser.add_argument('--dialect', default=None, help='SQL 方言（默认读取 DEFAULT_SQL_DIALECT）')
    parser.add_argument('--ensemble', action='store_true', help='复杂查询使用集成模式')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)

    service = Text2SQLService(AppContext.create())
    request = Text2SQLRequest(
        user_query=args.query,
        schema=demo_schema(),
        dialect=args.dialect,
        use_ensemble=args.ensemble,
    )

    print("=" * 60)
    print(f"问题: {args.query}")
    print("=" * 60)

    try:
        response = await service.generate(request)
    except NLSQLError as e:
        print(f"\n❌ 生成失败: {e}")
        return 1

    print(f"\nSQL:\n  {response.sql}")
    print(f"\n模型: {response.model_used}  置信度: {response.confidence:.0f}")
    print(f"意图: {response.intent.category} ({response.intent.complexity.value})")
    if response.explanation:
        print(f"解释: {response.explanation}")
    if response.examples_used:
        print("\n参考示例:")
        for ranked in response.examples_used:
            print(f"  - [{ranked.final_score:.2f}] {ranked.natural_language}")
    if response.validation_result and response.validation_result.warnings:
        print("\n警告:")
        for warning in response.validation_result.warnings:
            print(f"  - {warning}")
    return 0


def run():
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    run()
