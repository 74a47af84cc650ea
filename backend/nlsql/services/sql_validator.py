"""
SQL 验证服务

在返回生成结果前对 SQL 做静态检查：
1. 语法检查（硬编码规则 + sqlparse）：只读、单语句、括号/引号配对等
2. Schema 检查：引用的表是否存在、限定列（t.col）是否存在
3. 警告与建议：大表 SELECT * 无 LIMIT、笛卡尔积、前导 % 的 LIKE 等
4. 置信度：100 - 20 * 语法错误数 - 15 * Schema 错误数，按表对齐率缩放，再按查询结构加分

只有语法错误会触发回退；Schema 错误和警告附在结果上，由调用方决定如何处理。

使用方式：
    validator = SQLValidator()
    result = validator.validate("SELECT COUNT(*) FROM customers;", schema)
    if result.has_syntax_errors:
        print(result.syntax_errors)
"""
import re
import logging
from typing import Dict, List, Optional, Set

import sqlparse

from nlsql.schemas.generation import ValidationResult
from nlsql.schemas.schema_context import SchemaDescription

logger = logging.getLogger(__name__)


# SQL 关键字，不会被当作表别名
_RESERVED = {
    'where', 'on', 'join', 'inner', 'left', 'right', 'full', 'outer', 'cross',
    'group', 'order', 'limit', 'having', 'union', 'as', 'using', 'natural',
    'offset', 'fetch', 'window', 'except', 'intersect', 'lateral',
}

_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")
_JOIN_REF = re.compile(
    r'\bjoin\s+([a-zA-Z_][\w]*)(?:\.([a-zA-Z_][\w]*))?(?:\s+(?:as\s+)?([a-zA-Z_][\w]*))?',
    re.IGNORECASE,
)
_FROM_CLAUSE = re.compile(
    r'\bfrom\s+(.*?)(?=\b(?:where|join|inner|left|right|full|cross|natural|group|order|limit|having|union|except|intersect|on)\b|[();]|$)',
    re.IGNORECASE | re.DOTALL,
)
_TABLE_NAME = re.compile(
    r'^([a-zA-Z_][\w]*)(?:\.([a-zA-Z_][\w]*))?(?:\s+(?:as\s+)?([a-zA-Z_][\w]*))?$',
    re.IGNORECASE,
)
_CTE_NAME = re.compile(r'(?:\bwith|,)\s*(?:recursive\s+)?([a-zA-Z_][\w]*)\s+as\s*\(', re.IGNORECASE)
_QUALIFIED_COLUMN = re.compile(r'\b([a-zA-Z_][\w]*)\.([a-zA-Z_][\w]*|\*)')
_FROM_IN_FUNCTION = re.compile(r'\b(?:extract|substring|trim|overlay)\s*\([^()]*\)', re.IGNORECASE)
_INVALID_CHARACTERS = re.compile(r'[^\w\s.,()\[\]\'"`;=<>!+\-/*%:|]')


class SQLValidator:
    """
    基于规则的 SQL 验证器

    validate() 为同步方法；编排器同时接受同步和异步实现。
    """

    # 禁止的危险关键字（只读模式）
    DANGEROUS_KEYWORDS = [
        'DROP', 'DELETE', 'TRUNCATE', 'ALTER', 'CREATE',
        'INSERT', 'UPDATE', 'GRANT', 'REVOKE', 'EXEC', 'EXECUTE', 'MERGE',
    ]

    LARGE_TABLE_ROWS = 1000

    def validate(self, sql: str, schema: Optional[SchemaDescription] = None) -> ValidationResult:
        """
        验证 SQL 语句

        Args:
            sql: SQL 语句
            schema: 当前数据库 Schema，为空时跳过 Schema 检查

        Returns:
            ValidationResult
        """
        schema = schema or SchemaDescription()
        sql = sqlparse.format(sql or "", strip_comments=True).strip()

        syntax_errors = self._check_syntax(sql)
        if not sql:
            return ValidationResult(is_valid=False, syntax_errors=syntax_errors, confidence=0.0)

        scan_sql = self._strip_literals(sql)
        aliases = self._extract_table_refs(scan_sql)
        referenced_tables = list(dict.fromkeys(aliases.values()))

        semantic_errors = self._check_semantics(scan_sql, schema, aliases, referenced_tables)
        warnings = self._generate_warnings(sql, scan_sql, schema, referenced_tables)
        suggestions = self._generate_suggestions(scan_sql, schema, referenced_tables)
        confidence = self._calculate_confidence(
            scan_sql, schema, referenced_tables, syntax_errors, semantic_errors
        )

        result = ValidationResult(
            is_valid=not syntax_errors and not semantic_errors,
            syntax_errors=syntax_errors,
            semantic_errors=semantic_errors,
            warnings=warnings,
            suggestions=suggestions,
            confidence=confidence,
        )
        logger.debug(
            f"Validated SQL: valid={result.is_valid}, syntax={len(syntax_errors)}, "
            f"semantic={len(semantic_errors)}, confidence={confidence}"
        )
        return result

    # ========================================
    # 语法检查
    # ========================================

    def _check_syntax(self, sql: str) -> List[str]:
        errors: List[str] = []
        lower = sql.lower()

        if not lower:
            errors.append("SQL query is empty")
            return errors

        if not (lower.startswith('select') or lower.startswith('with')):
            errors.append("Query must start with SELECT or WITH clause")

        statements = [s for s in sqlparse.split(sql) if s.strip().strip(';').strip()]
        if len(statements) > 1:
            errors.append("Multiple SQL statements are not allowed")
        elif statements:
            statement_type = sqlparse.parse(statements[0])[0].get_type()
            if statement_type not in ('SELECT', 'UNKNOWN'):
                errors.append(f"Only read-only queries are allowed, got {statement_type}")

        scan_sql = self._strip_literals(sql)
        upper = scan_sql.upper()
        for keyword in self.DANGEROUS_KEYWORDS:
            if re.search(r'\b' + keyword + r'\b', upper):
                errors.append(f"Destructive operation not allowed: {keyword}")
                break

        open_parens = sql.count('(')
        close_parens = sql.count(')')
        if open_parens != close_parens:
            errors.append(f"Unbalanced parentheses: {open_parens} opening, {close_parens} closing")

        if sql.count("'") % 2 != 0:
            errors.append("Unbalanced single quotes")
        if sql.count('"') % 2 != 0:
            errors.append("Unbalanced double quotes")

        scan_lower = re.sub(r'\s+', ' ', scan_sql.lower())
        if 'select select' in scan_lower:
            errors.append("Duplicate SELECT keyword detected")
        if 'from from' in scan_lower:
            errors.append("Duplicate FROM keyword detected")

        if lower.startswith('select') and not re.search(r'\bfrom\b', scan_lower) and 'dual' not in scan_lower:
            errors.append("SELECT statement missing FROM clause")

        if _INVALID_CHARACTERS.search(scan_sql):
            errors.append("Query contains invalid characters")

        return errors

    # ========================================
    # Schema 检查
    # ========================================

    def _check_semantics(self, scan_sql: str, schema: SchemaDescription,
                         aliases: Dict[str, str], referenced_tables: List[str]) -> List[str]:
        errors: List[str] = []
        if not schema.tables:
            return errors

        tables_lower = {name.lower(): table for name, table in schema.tables.items()}

        for table in referenced_tables:
            if table not in tables_lower:
                errors.append(f"Table '{table}' does not exist in the schema")

        seen = set()
        for qualifier, column in _QUALIFIED_COLUMN.findall(scan_sql):
            table_name = aliases.get(qualifier.lower())
            if table_name is None or column == '*' or table_name not in tables_lower:
                continue
            key = (table_name, column.lower())
            if key in seen:
                continue
            seen.add(key)
            if not tables_lower[table_name].has_column(column):
                errors.append(f"Column '{column}' does not exist in table '{table_name}'")

        return errors

    # ========================================
    # 警告与建议
    # ========================================

    def _generate_warnings(self, sql: str, scan_sql: str, schema: SchemaDescription,
                           referenced_tables: List[str]) -> List[str]:
        warnings: List[str] = []
        lower = scan_sql.lower()
        tables_lower = {name.lower(): table for name, table in schema.tables.items()}

        if re.search(r'select\s+\*', lower) and 'limit' not in lower:
            if any((tables_lower[t].row_count or 0) > self.LARGE_TABLE_ROWS
                   for t in referenced_tables if t in tables_lower):
                warnings.append("SELECT * without LIMIT may return large datasets. Consider adding LIMIT clause.")

        if len(referenced_tables) > 1 and 'join' not in lower and 'where' not in lower:
            warnings.append("Multiple tables without JOIN conditions may result in Cartesian product")

        if re.search(r"\blike\s+'%", sql, re.IGNORECASE):
            warnings.append("LIKE patterns starting with % may be slow on large datasets")

        if not sql.rstrip().endswith(';'):
            warnings.append("Query should end with a semicolon")

        return warnings

    def _generate_suggestions(self, scan_sql: str, schema: SchemaDescription,
                              referenced_tables: List[str]) -> List[str]:
        suggestions: List[str] = []
        lower = scan_sql.lower()

        if re.search(r'select\s+\*', lower):
            suggestions.append("Consider selecting specific columns instead of * for better performance")

        if 'limit' not in lower and 'count(' not in lower:
            suggestions.append("Consider adding LIMIT clause to control result set size")

        if len(referenced_tables) > 1 and 'join' not in lower:
            related = [
                rel for rel in schema.relationships
                if rel.table.lower() in referenced_tables and rel.referenced_table.lower() in referenced_tables
            ]
            if related:
                suggestions.append("Consider using explicit JOIN syntax for better readability")

        return suggestions

    # ========================================
    # 置信度
    # ========================================

    def _calculate_confidence(self, scan_sql: str, schema: SchemaDescription,
                              referenced_tables: List[str], syntax_errors: List[str],
                              semantic_errors: List[str]) -> float:
        confidence = 100.0
        confidence -= len(syntax_errors) * 20
        confidence -= len(semantic_errors) * 15

        tables_lower = {name.lower() for name in schema.tables.keys()}
        if referenced_tables:
            valid = [t for t in referenced_tables if t in tables_lower]
            alignment = len(valid) / len(referenced_tables) * 100
        else:
            alignment = 50.0
        confidence = confidence * (alignment / 100)

        lower = scan_sql.lower()
        if 'where' in lower:
            confidence += 5
        if 'order by' in lower:
            confidence += 5
        if 'limit' in lower:
            confidence += 5
        if 'join' in lower and len(referenced_tables) > 1:
            confidence += 10

        return float(max(0, min(100, round(confidence))))

    # ========================================
    # 辅助方法
    # ========================================

    @staticmethod
    def _strip_literals(sql: str) -> str:
        """替换字符串字面量，避免字面量中的内容干扰关键字匹配"""
        return _STRING_LITERAL.sub("''", sql)

    @staticmethod
    def _extract_table_refs(scan_sql: str) -> Dict[str, str]:
        """
        提取 FROM（含逗号分隔的多表）/ JOIN 引用的表

        Returns:
            别名（或表名）-> 表名，均为小写；CTE 名称和 dual 不计入
        """
        cte_names: Set[str] = {name.lower() for name in _CTE_NAME.findall(scan_sql)}
        cleaned = _FROM_IN_FUNCTION.sub(' ', scan_sql)

        refs = []
        for clause in _FROM_CLAUSE.findall(cleaned):
            for part in clause.split(','):
                match = _TABLE_NAME.match(part.strip())
                if match:
                    refs.append(match.groups())
        refs.extend(_JOIN_REF.findall(cleaned))

        aliases: Dict[str, str] = {}
        for first, second, alias in refs:
            # schema.table 形式取表名部分
            table = (second or first).lower()
            if table in cte_names or table == 'dual':
                continue
            aliases[table] = table
            if alias and alias.lower() not in _RESERVED:
                aliases[alias.lower()] = table
        return aliases
