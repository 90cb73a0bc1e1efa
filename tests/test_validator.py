import pytest

from db_query.errors import NotReadOnlyError, SQLSyntaxError
from db_query.sql import SQLValidator


@pytest.fixture
def validator():
    return SQLValidator(dialect="postgres")


class TestBounding:
    def test_appends_default_limit(self, validator):
        result = validator.validate("SELECT * FROM users")

        assert result.is_valid
        assert result.sql == "SELECT * FROM users LIMIT 1000"
        assert result.limit_applied

    def test_trailing_semicolon_and_whitespace(self, validator):
        result = validator.validate("  SELECT * FROM users;  \n")

        assert result.sql == "SELECT * FROM users LIMIT 1000"

    def test_trailing_comment_still_bounded(self, validator):
        result = validator.validate("SELECT * FROM users -- everyone")

        assert result.is_valid
        assert "LIMIT 1000" in result.sql
        # The bounded text re-validates unchanged
        assert validator.validate(result.sql).sql == result.sql

    @pytest.mark.parametrize("sql", [
        "SELECT id FROM users LIMIT 5",
        "SELECT id FROM users LIMIT 5000",
        "select id from users order by id limit 10 offset 20",
        "SELECT * FROM users FETCH FIRST 5 ROWS ONLY",
    ])
    def test_explicit_limit_kept_unchanged(self, validator, sql):
        result = validator.validate(sql)

        assert result.is_valid
        assert result.sql == sql
        assert not result.limit_applied

    def test_cte_is_bounded(self, validator):
        result = validator.validate(
            "WITH recent AS (SELECT * FROM users WHERE id > 10) SELECT name FROM recent"
        )

        assert result.is_valid
        assert result.sql.startswith("WITH recent AS")
        assert result.sql.endswith("LIMIT 1000")

    def test_union_is_bounded(self, validator):
        result = validator.validate("SELECT id FROM users UNION SELECT id FROM admins")

        assert result.is_valid
        assert "LIMIT 1000" in result.sql

    def test_limit_inside_subquery_does_not_count(self, validator):
        result = validator.validate("SELECT * FROM (SELECT id FROM users LIMIT 3) AS t")

        assert result.sql.endswith("LIMIT 1000")

    def test_keywords_inside_literals_are_data(self, validator):
        result = validator.validate("SELECT 'DELETE FROM users; DROP TABLE x' AS note")

        assert result.is_valid

    def test_custom_default_limit(self):
        result = SQLValidator(default_limit=50).validate("SELECT 1")

        assert result.sql == "SELECT 1 LIMIT 50"

    def test_mysql_dialect_keeps_backticks(self):
        result = SQLValidator(dialect="mysql").validate("SELECT `id` FROM `users`")

        assert result.sql == "SELECT `id` FROM `users` LIMIT 1000"


class TestRejection:
    @pytest.mark.parametrize("sql,statement_type", [
        ("DELETE FROM users", "DELETE"),
        ("INSERT INTO users (name) VALUES ('test')", "INSERT"),
        ("UPDATE users SET name = 'test'", "UPDATE"),
        ("DROP TABLE users", "DROP"),
        ("CREATE TABLE t (id INT)", "CREATE"),
        ("ALTER TABLE users ADD COLUMN age INT", "ALTER"),
    ])
    def test_mutating_statements(self, validator, sql, statement_type):
        result = validator.validate(sql)

        assert not result.is_valid
        assert isinstance(result.error, NotReadOnlyError)
        assert result.error.code == "NOT_READ_ONLY"
        assert result.statement_type == statement_type
        assert statement_type in result.error.message

    @pytest.mark.parametrize("sql", [
        "TRUNCATE TABLE users",
        "MERGE INTO users u USING staging s ON u.id = s.id WHEN MATCHED THEN DELETE",
        "GRANT SELECT ON users TO bob",
        "EXPLAIN SELECT * FROM users",
        "WITH gone AS (DELETE FROM users RETURNING *) SELECT * FROM gone",
        "SELECT * INTO backup_users FROM users",
    ])
    def test_other_non_read_only(self, validator, sql):
        result = validator.validate(sql)

        assert isinstance(result.error, NotReadOnlyError)

    @pytest.mark.parametrize("sql", [
        "SELECT 1; SELECT 2",
        "SELECT * FROM users; DROP TABLE users",
        "BEGIN; SELECT 1; COMMIT",
    ])
    def test_multiple_statements(self, validator, sql):
        result = validator.validate(sql)

        assert isinstance(result.error, NotReadOnlyError)
        assert result.error.statement_type == "MULTIPLE"

    @pytest.mark.parametrize("sql", ["", "   ", "\n\t", ";"])
    def test_empty_input_is_syntax_error(self, validator, sql):
        result = validator.validate(sql)

        assert isinstance(result.error, SQLSyntaxError)
        assert result.error.code == "SYNTAX_ERROR"

    def test_parse_error_has_position(self, validator):
        result = validator.validate("SELECT * FROM users WHERE (id = 1")

        assert isinstance(result.error, SQLSyntaxError)
        assert result.error.message.startswith("Invalid SQL syntax")
        assert result.error.line == 1
        assert result.error.details["line"] == 1

    def test_unterminated_string_is_syntax_error(self, validator):
        result = validator.validate("SELECT 'oops FROM users")

        assert isinstance(result.error, SQLSyntaxError)

    def test_unwrap_raises_rejection(self, validator):
        with pytest.raises(NotReadOnlyError):
            validator.validate("DELETE FROM users").unwrap()

    def test_unwrap_returns_sql(self, validator):
        assert validator.validate("SELECT 1").unwrap() == "SELECT 1 LIMIT 1000"
