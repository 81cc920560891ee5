"""SQL text used by the route handlers.

Every caller-supplied value is passed as a positional ``?`` bind. Object
names cannot be bound directly, so they go through ``IDENTIFIER(?)`` after
validate_identifier() has checked them.
"""

from __future__ import annotations

import re

from .shared import ServerError

DQ_METRICS = "DATA_QUALITY_DB.DQ_METRICS"

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]{0,254}$")


def validate_identifier(value: str, *, name: str) -> str:
    """Return ``value`` upper-cased if it is a plain unquoted identifier."""
    if not _IDENTIFIER_PATTERN.match(value):
        raise ServerError(
            status_code=400,
            code="VALIDATION_ERROR",
            message=f"'{name}' must be a plain identifier (letters, digits, _ or $)",
        )
    return value.upper()


def information_schema_view(database: str, view: str) -> str:
    return f"{database}.INFORMATION_SCHEMA.{view}"


CONNECTION_TEST = """
SELECT
    CURRENT_VERSION() AS VERSION,
    CURRENT_ACCOUNT() AS ACCOUNT,
    CURRENT_USER() AS USER_NAME,
    CURRENT_ROLE() AS ROLE_NAME
"""

SHOW_DATABASES = "SHOW DATABASES"

LIST_SCHEMAS = """
SELECT SCHEMA_NAME
FROM IDENTIFIER(?)
ORDER BY SCHEMA_NAME
"""

LIST_TABLES = """
SELECT TABLE_NAME, TABLE_TYPE, ROW_COUNT, BYTES, LAST_ALTERED
FROM IDENTIFIER(?)
WHERE TABLE_SCHEMA = ?
ORDER BY TABLE_NAME
"""

# Source schema whose STG_ tables are registered as datasets
DATASET_DATABASE = "BANKING_DW"
DATASET_SCHEMA = "BRONZE"
DATASET_TABLE_PATTERN = "STG_%"

LIST_DATASETS = """
SELECT TABLE_NAME
FROM IDENTIFIER(?)
WHERE TABLE_SCHEMA = ?
  AND TABLE_NAME LIKE ?
ORDER BY TABLE_NAME
"""

OVERALL_SCORE_TODAY = f"""
SELECT
    SUMMARY_DATE,
    ROUND(AVG(DQ_SCORE), 2) AS OVERALL_DQ_SCORE
FROM {DQ_METRICS}.DQ_DAILY_SUMMARY
WHERE SUMMARY_DATE = CURRENT_DATE
GROUP BY SUMMARY_DATE
"""

OVERALL_SCORE_LATEST = f"""
SELECT
    SUMMARY_DATE,
    ROUND(AVG(DQ_SCORE), 2) AS OVERALL_DQ_SCORE
FROM {DQ_METRICS}.DQ_DAILY_SUMMARY
WHERE SUMMARY_DATE = (SELECT MAX(SUMMARY_DATE) FROM {DQ_METRICS}.DQ_DAILY_SUMMARY)
GROUP BY SUMMARY_DATE
"""

SCORE_FOR_DATE = f"""
SELECT ROUND(AVG(DQ_SCORE), 2) AS OVERALL_DQ_SCORE
FROM {DQ_METRICS}.DQ_DAILY_SUMMARY
WHERE SUMMARY_DATE = ?
"""

DAILY_SUMMARY = f"""
SELECT
    SUMMARY_DATE,
    ROUND(AVG(DQ_SCORE), 2) AS AVG_DQ_SCORE,
    SUM(TOTAL_CHECKS) AS TOTAL_CHECKS,
    SUM(PASSED_CHECKS) AS PASSED_CHECKS,
    SUM(FAILED_CHECKS) AS FAILED_CHECKS,
    SUM(WARNING_CHECKS) AS WARNING_CHECKS,
    COUNT(DISTINCT TABLE_NAME) AS TOTAL_TABLES
FROM {DQ_METRICS}.DQ_DAILY_SUMMARY
WHERE SUMMARY_DATE >= ?
GROUP BY SUMMARY_DATE
ORDER BY SUMMARY_DATE DESC
"""

CHECK_RESULTS = f"""
SELECT
    CHECK_ID,
    RUN_ID,
    CHECK_TIMESTAMP,
    DATASET_ID,
    DATABASE_NAME,
    SCHEMA_NAME,
    TABLE_NAME,
    COLUMN_NAME,
    RULE_NAME,
    RULE_TYPE,
    TOTAL_RECORDS,
    INVALID_RECORDS,
    PASS_RATE,
    THRESHOLD,
    CHECK_STATUS,
    FAILURE_REASON
FROM {DQ_METRICS}.DQ_CHECK_RESULTS
WHERE CHECK_TIMESTAMP >= ?
"""

# Optional check-results filters: query parameter -> bound predicate
CHECK_RESULT_FILTERS = {
    "runId": "RUN_ID = ?",
    "tableName": "TABLE_NAME = ?",
    "status": "CHECK_STATUS = ?",
}


def check_results_query(filters: list[str]) -> str:
    """Assemble CHECK_RESULTS with the predicates for the given filter names."""
    clauses = "".join(f"  AND {CHECK_RESULT_FILTERS[name]}\n" for name in filters)
    return f"{CHECK_RESULTS}{clauses}ORDER BY CHECK_TIMESTAMP DESC\nLIMIT ?"
