import pytest

from conftest import FakeDriverError
from qualytics.connector import ConnectionPool, DuckDBDriver, QueryExecutor, count_placeholders
from qualytics.errors import QueryError
from qualytics.server import queries


@pytest.fixture
def duck_pool(duckdb_driver, config_store):
    return ConnectionPool(duckdb_driver, config_store, max_per_key=2, max_total=2)


@pytest.mark.asyncio
async def test_two_positional_binds(duckdb_driver, duck_pool, config):
    executor = QueryExecutor(duckdb_driver)
    async with duck_pool.connection(config) as conn:
        result = await executor.execute(conn, "SELECT ? AS SCORE_VALUE, ? AS TABLE_LABEL", [41, "orders"])

    assert result.columns == ("SCORE_VALUE", "TABLE_LABEL")
    assert result.rows == ((41, "orders"),)
    assert result.row_count == len(result.rows)
    assert all(len(row) == len(result.columns) for row in result.rows)
    assert result.to_dict() == {
        "columns": ["SCORE_VALUE", "TABLE_LABEL"],
        "rows": [[41, "orders"]],
        "rowCount": 1,
    }


@pytest.mark.asyncio
async def test_binds_filter_table_rows(duckdb_driver, duck_pool, config):
    duckdb_driver.database.execute(
        "CREATE TABLE check_results (table_name VARCHAR, check_status VARCHAR, pass_rate DOUBLE)"
    )
    duckdb_driver.database.execute(
        "INSERT INTO check_results VALUES ('ORDERS', 'FAILED', 71.5), ('ORDERS', 'PASSED', 100.0), "
        "('CUSTOMERS', 'FAILED', 12.0)"
    )
    executor = QueryExecutor(duckdb_driver)

    async with duck_pool.connection(config) as conn:
        result = await executor.execute(
            conn,
            "SELECT table_name, pass_rate FROM check_results WHERE check_status = ? AND pass_rate > ? "
            "ORDER BY table_name",
            ("FAILED", 10),
        )

    assert result.records() == [
        {"table_name": "CUSTOMERS", "pass_rate": 12.0},
        {"table_name": "ORDERS", "pass_rate": 71.5},
    ]
    assert result.row_count == 2


@pytest.mark.asyncio
async def test_bound_value_is_not_interpreted_as_sql(duckdb_driver, duck_pool, config):
    duckdb_driver.database.execute("CREATE TABLE datasets (name VARCHAR)")
    duckdb_driver.database.execute("INSERT INTO datasets VALUES ('STG_ORDERS')")
    executor = QueryExecutor(duckdb_driver)

    async with duck_pool.connection(config) as conn:
        result = await executor.execute(conn, "SELECT name FROM datasets WHERE name = ?", ["x' OR '1'='1"])

    assert result.rows == ()
    assert result.row_count == 0


@pytest.mark.asyncio
async def test_failed_statement_raises_query_error(duckdb_driver, duck_pool, config):
    executor = QueryExecutor(duckdb_driver)
    with pytest.raises(QueryError) as exc_info:
        async with duck_pool.connection(config) as conn:
            await executor.execute(conn, "SELECT * FROM missing_table")

    assert "missing_table" in exc_info.value.message
    assert exc_info.value.code == "DATA_NOT_FOUND"
    # The session was discarded rather than returned to the idle list
    assert duck_pool.stats()["total"] == 0


@pytest.mark.asyncio
async def test_driver_error_fields_are_kept_verbatim(driver, pool, config):
    driver.script("FROM NOPE", error=FakeDriverError(
        "SQL compilation error:\nObject 'NOPE' does not exist or not authorized.",
        errno=2003,
        sqlstate="42S02",
    ))
    executor = QueryExecutor(driver)
    conn = await pool.get_connection(config)

    with pytest.raises(QueryError) as exc_info:
        await executor.execute(conn, "SELECT 1 FROM NOPE")

    error = exc_info.value
    assert error.errno == 2003
    assert error.sqlstate == "42S02"
    assert error.message == "SQL compilation error:\nObject 'NOPE' does not exist or not authorized."
    assert error.code == "DATA_NOT_FOUND"
    assert isinstance(error.__cause__, FakeDriverError)


@pytest.mark.asyncio
async def test_bind_count_mismatch_is_rejected_before_sending(driver, pool, config):
    executor = QueryExecutor(driver)
    conn = await pool.get_connection(config)

    with pytest.raises(ValueError, match="2 placeholder"):
        await executor.execute(conn, "SELECT ? , ?", [1])
    with pytest.raises(ValueError, match="0 placeholder"):
        await executor.execute(conn, "SELECT 1", [1])

    assert driver.statements == []


@pytest.mark.asyncio
async def test_params_must_be_positional(driver, pool, config):
    executor = QueryExecutor(driver)
    conn = await pool.get_connection(config)
    with pytest.raises(TypeError):
        await executor.execute(conn, "SELECT ?", {"value": 1})
    with pytest.raises(ValueError):
        await executor.execute(conn, "   ")


@pytest.mark.asyncio
async def test_binds_reach_the_driver_unchanged(driver, pool, config):
    executor = QueryExecutor(driver)
    conn = await pool.get_connection(config)
    await executor.execute(conn, "SELECT * FROM T WHERE A = ? AND B = ?", ("a'b", 2))
    assert driver.statements == [("SELECT * FROM T WHERE A = ? AND B = ?", ["a'b", 2])]


def test_placeholders_in_literals_are_not_counted():
    assert count_placeholders("SELECT '?' AS q, ? AS v") == 1
    assert count_placeholders("SELECT 1") == 0
    assert count_placeholders("SELECT * FROM IDENTIFIER(?) WHERE A = ? LIMIT ?") == 3


def test_duckdb_driver_rejects_multiple_statements():
    with pytest.raises(QueryError):
        DuckDBDriver.transpile("SELECT 1; SELECT 2")


@pytest.mark.asyncio
async def test_duckdb_session_reports_its_context(duckdb_driver, duck_pool, config):
    executor = QueryExecutor(duckdb_driver)
    async with duck_pool.connection(config) as conn:
        result = await executor.execute(
            conn, "SELECT CURRENT_ACCOUNT() AS ACCOUNT_NAME, CURRENT_WAREHOUSE() AS WAREHOUSE_NAME"
        )
    assert result.first() == {"ACCOUNT_NAME": "XY12345", "WAREHOUSE_NAME": "COMPUTE_WH"}


def test_untokenizable_sql_is_a_syntax_error():
    with pytest.raises(QueryError) as exc_info:
        count_placeholders("SELECT 'unterminated")
    assert exc_info.value.code == "QUERY_SYNTAX_ERROR"
    assert exc_info.value.errno == 1003


@pytest.mark.asyncio
async def test_unterminated_literal_is_rejected_before_sending(driver, pool, config):
    executor = QueryExecutor(driver)
    conn = await pool.get_connection(config)
    with pytest.raises(QueryError) as exc_info:
        await executor.execute(conn, "SELECT * FROM T WHERE A = 'open", [])
    assert exc_info.value.code == "QUERY_SYNTAX_ERROR"
    assert driver.statements == []


@pytest.fixture
def banking_dw(duckdb_driver):
    database = duckdb_driver.database
    database.execute("ATTACH ':memory:' AS BANKING_DW")
    database.execute("CREATE SCHEMA BANKING_DW.BRONZE")
    database.execute("CREATE TABLE BANKING_DW.BRONZE.STG_ACCOUNTS (id INTEGER)")
    database.execute("CREATE TABLE BANKING_DW.BRONZE.STG_LOANS (id INTEGER)")
    database.execute("CREATE TABLE BANKING_DW.BRONZE.RAW_EVENTS (id INTEGER)")
    database.execute("INSERT INTO BANKING_DW.BRONZE.STG_LOANS VALUES (1), (2)")
    return duckdb_driver


@pytest.mark.asyncio
async def test_duckdb_lists_datasets_through_information_schema(banking_dw, duck_pool, config):
    executor = QueryExecutor(banking_dw)
    async with duck_pool.connection(config) as conn:
        result = await executor.execute(
            conn,
            queries.LIST_DATASETS,
            [queries.information_schema_view("BANKING_DW", "TABLES"), "BRONZE", "STG_%"],
        )
    assert result.columns == ("TABLE_NAME",)
    assert result.rows == (("STG_ACCOUNTS",), ("STG_LOANS",))


@pytest.mark.asyncio
async def test_duckdb_lists_schemas_and_tables(banking_dw, duck_pool, config):
    executor = QueryExecutor(banking_dw)
    async with duck_pool.connection(config) as conn:
        schemas = await executor.execute(
            conn, queries.LIST_SCHEMAS, [queries.information_schema_view("BANKING_DW", "SCHEMATA")]
        )
        tables = await executor.execute(
            conn, queries.LIST_TABLES, [queries.information_schema_view("BANKING_DW", "TABLES"), "BRONZE"]
        )
    assert ("BRONZE",) in schemas.rows
    assert [row["TABLE_NAME"] for row in tables.records()] == ["RAW_EVENTS", "STG_ACCOUNTS", "STG_LOANS"]
    assert tables.records()[0]["TABLE_TYPE"] == "BASE TABLE"
    assert tables.records()[0]["ROW_COUNT"] is None


@pytest.mark.asyncio
async def test_duckdb_identifier_bind_names_a_table(banking_dw, duck_pool, config):
    executor = QueryExecutor(banking_dw)
    async with duck_pool.connection(config) as conn:
        result = await executor.execute(
            conn, "SELECT COUNT(*) AS ROW_TOTAL FROM IDENTIFIER(?) WHERE id > ?", ["BANKING_DW.BRONZE.STG_LOANS", 0]
        )
    assert result.first() == {"ROW_TOTAL": 2}


def test_identifier_binds_are_resolved_before_transpiling():
    sql, params, relations = DuckDBDriver.bind_identifiers(
        "SELECT * FROM IDENTIFIER(?) WHERE A = ? AND B = '?'", ["DB.SCH.T", 5]
    )
    assert "IDENTIFIER" not in sql
    assert params == [5]
    assert relations == ['"DB"."SCH"."T"']
    with pytest.raises(QueryError):
        DuckDBDriver.bind_identifiers("SELECT * FROM IDENTIFIER(?)", [42])
