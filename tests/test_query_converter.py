"""Tests for SQL / OData / FetchXML conversion."""

import xml.etree.ElementTree as ET

import pytest

from flowquery.models import ConversionResult, QueryConversionError, QueryDialect
from flowquery.query_converter import (
    QueryConverter,
    convert,
    convert_sql_condition,
    format_odata_literal,
    parse_from_clause,
    parse_odata_query,
    split_sql_clauses,
)

SIMPLE_FETCH = (
    '<fetch top="5"><entity name="account">'
    '<attribute name="name"/>'
    '<filter type="and"><condition attribute="statecode" operator="eq" value="0"/></filter>'
    '<order attribute="name" descending="true"/>'
    '</entity></fetch>'
)


def _has_verify_warning(result):
    return any("please verify the result" in warning for warning in result.warnings)


class TestIdentityAndDispatch:
    @pytest.mark.parametrize("dialect", list(QueryDialect))
    @pytest.mark.parametrize("text", ["", "anything at all", "SELECT * FROM account"])
    def test_same_dialect_is_identity(self, dialect, text):
        result = convert(text, dialect, dialect)
        assert result.succeeded
        assert result.text == text
        assert result.warnings == ()

    def test_blank_input(self):
        result = QueryConverter.convert("   ", "sql", "odata")
        assert result.succeeded
        assert result.text == ""

    def test_unsupported_dialect(self):
        result = QueryConverter.convert("SELECT 1", "sql", "graphql")
        assert not result.succeeded
        assert "not supported" in result.error
        assert result.text == "SELECT 1"

    def test_dialects_accept_strings(self):
        assert convert("SELECT * FROM account", "sql", "odata").succeeded


class TestSqlToOData:
    def test_select_star(self):
        result = convert("SELECT * FROM account", QueryDialect.SQL, QueryDialect.ODATA)
        assert result.succeeded
        assert result.text == "/api/data/v9.2/accounts"
        assert _has_verify_warning(result)

    def test_join_derives_navigation_property(self):
        sql = "SELECT a.name, b.name FROM account a JOIN contact b ON a.primarycontactid = b.contactid"
        result = convert(sql, "sql", "odata")
        assert result.succeeded
        assert result.text == "/api/data/v9.2/accounts?$select=name&$expand=primarycontact($select=name)"
        assert any("primarycontact" in w and "verify" in w for w in result.warnings)

    def test_reverse_lookup_join(self):
        sql = "SELECT c.fullname FROM contact c JOIN account a ON a.primarycontactid = c.contactid"
        result = convert(sql, "sql", "odata")
        assert result.succeeded
        assert "$expand=accounts" in result.text
        assert any("reverse lookup" in w for w in result.warnings)

    def test_where_clause(self):
        sql = "SELECT name FROM account WHERE statecode = 0 AND name = 'Contoso'"
        result = convert(sql, "sql", "odata")
        assert result.text == "/api/data/v9.2/accounts?$select=name&$filter=statecode eq 0 and name eq 'Contoso'"

    def test_like_and_null(self):
        sql = "SELECT name FROM account WHERE name LIKE 'Con%' AND telephone1 IS NOT NULL"
        result = convert(sql, "sql", "odata")
        assert "$filter=startswith(name,'Con') and telephone1 ne null" in result.text

    def test_order_and_limit(self):
        result = convert("SELECT name FROM account ORDER BY name DESC LIMIT 10", "sql", "odata")
        assert result.text == "/api/data/v9.2/accounts?$select=name&$orderby=name desc&$top=10"

    def test_top(self):
        result = convert("SELECT TOP 5 name FROM account", "sql", "odata")
        assert result.text == "/api/data/v9.2/accounts?$select=name&$top=5"

    def test_qualified_where_on_joined_table(self):
        sql = ("SELECT a.name FROM account a JOIN contact c ON a.primarycontactid = c.contactid "
               "WHERE c.fullname = 'Ann'")
        result = convert(sql, "sql", "odata")
        assert "$filter=primarycontact/fullname eq 'Ann'" in result.text

    def test_group_by_is_reported(self):
        result = convert("SELECT name FROM account GROUP BY name", "sql", "odata")
        assert result.succeeded
        assert "GROUP BY is not supported and was ignored" in result.warnings

    @pytest.mark.parametrize("sql", [
        "SELECT name",
        "name FROM account",
        "SELECT name FROM account WHERE statecode IN (0, 1)",
        "SELECT name FROM (SELECT name FROM account)",
        "SELECT name FROM account LIMIT ten",
    ])
    def test_unsupported_sql_fails(self, sql):
        result = convert(sql, "sql", "odata")
        assert not result.succeeded
        assert result.text == sql
        assert result.error.startswith("Failed to convert SQL to OData")


class TestODataConversions:
    def test_odata_to_fetchxml(self):
        odata = "/api/data/v9.2/contacts?$select=fullname,emailaddress&$filter=statecode eq 0&$orderby=fullname"
        result = convert(odata, "odata", "fetchxml")
        assert result.succeeded
        assert _has_verify_warning(result)

        root = ET.fromstring(result.text)
        entity = root.find("entity")
        assert entity.get("name") == "contact"
        assert [a.get("name") for a in entity.findall("attribute")] == ["fullname", "emailaddress"]
        conditions = entity.findall("filter/condition")
        assert len(conditions) == 1
        assert conditions[0].attrib == {"attribute": "statecode", "operator": "eq", "value": "0"}
        orders = entity.findall("order")
        assert len(orders) == 1
        assert orders[0].get("attribute") == "fullname"
        assert orders[0].get("descending") == "false"

    def test_odata_to_fetchxml_without_select(self):
        result = convert("/api/data/v9.2/accounts?$top=3", "odata", "fetchxml")
        root = ET.fromstring(result.text)
        assert root.get("top") == "3"
        assert root.find("entity/all-attributes") is not None

    def test_odata_to_sql(self):
        odata = "/api/data/v9.2/contacts?$select=fullname&$filter=parentcustomerid eq null&$top=3"
        result = convert(odata, "odata", "sql")
        assert result.text == "SELECT fullname FROM contact WHERE parentcustomerid IS NULL LIMIT 3"

    def test_odata_to_sql_expand_dropped(self):
        result = convert("/api/data/v9.2/accounts?$expand=primarycontact", "odata", "sql")
        assert result.text == "SELECT * FROM account"
        assert any("$expand" in w for w in result.warnings)

    @pytest.mark.parametrize("odata", ["?$top=1", "/api/data/v9.2/accounts?$top=many"])
    def test_invalid_odata(self, odata):
        result = convert(odata, "odata", "sql")
        assert not result.succeeded

    def test_parse_odata_query(self):
        query = parse_odata_query("/api/data/v9.2/accounts?$orderby=name desc,createdon")
        assert query.collection == "accounts"
        assert query.orderby == [("name", True), ("createdon", False)]


class TestFetchXmlConversions:
    def test_fetchxml_to_odata(self):
        result = convert(SIMPLE_FETCH, "fetchxml", "odata")
        assert result.succeeded
        assert result.text == "/api/data/v9.2/accounts?$select=name&$filter=statecode eq 0&$orderby=name desc&$top=5"

    def test_link_entity_becomes_expand(self):
        fetch = ('<fetch><entity name="account"><attribute name="name"/>'
                 '<link-entity name="contact" from="contactid" to="primarycontactid">'
                 '<attribute name="fullname"/></link-entity></entity></fetch>')
        result = convert(fetch, "fetchxml", "odata")
        assert result.text == "/api/data/v9.2/accounts?$select=name&$expand=primarycontact($select=fullname)"
        assert any("primarycontact" in w for w in result.warnings)

    def test_null_operator(self):
        fetch = ('<fetch><entity name="account"><filter>'
                 '<condition attribute="parentaccountid" operator="null"/></filter></entity></fetch>')
        result = convert(fetch, "fetchxml", "odata")
        assert "$filter=parentaccountid eq null" in result.text

    def test_or_filter_warns(self):
        fetch = ('<fetch><entity name="account"><filter type="or">'
                 '<condition attribute="name" operator="eq" value="A"/>'
                 '<condition attribute="name" operator="eq" value="B"/></filter></entity></fetch>')
        result = convert(fetch, "fetchxml", "odata")
        assert result.succeeded
        assert any("'or' filter" in w for w in result.warnings)

    @pytest.mark.parametrize("fetch,message", [
        ("<fetch><entity", "Invalid XML format"),
        ('<fetch><entity name="a"/><entity name="b"/></fetch>', "exactly one entity"),
        ("<fetch><entity/></fetch>", "Entity name not specified"),
        ("<fetch/>", "No entity element"),
    ])
    def test_invalid_fetchxml(self, fetch, message):
        result = convert(fetch, "fetchxml", "odata")
        assert not result.succeeded
        assert message in result.error
        assert result.text == fetch

    def test_fetchxml_to_sql(self):
        result = convert(SIMPLE_FETCH, "fetchxml", "sql")
        assert result.succeeded
        assert result.text == "SELECT name FROM account WHERE statecode = 0 ORDER BY name DESC LIMIT 5"
        assert "Automatic conversion from FetchXML to OData - please verify the result" in result.warnings
        assert "Automatic conversion from OData to SQL - please verify the result" in result.warnings

    def test_sql_to_fetchxml(self):
        result = convert("SELECT name FROM account WHERE statecode = 0", "sql", "fetchxml")
        assert result.succeeded
        root = ET.fromstring(result.text)
        assert root.find("entity").get("name") == "account"
        assert root.find("entity/filter/condition").get("attribute") == "statecode"


class TestWarnings:
    @pytest.mark.parametrize("text,source,target", [
        ("SELECT * FROM account", "sql", "odata"),
        ("SELECT * FROM account", "sql", "fetchxml"),
        ("/api/data/v9.2/accounts", "odata", "sql"),
        ("/api/data/v9.2/accounts", "odata", "fetchxml"),
        (SIMPLE_FETCH, "fetchxml", "odata"),
        (SIMPLE_FETCH, "fetchxml", "sql"),
    ])
    def test_successful_conversion_asks_for_verification(self, text, source, target):
        result = convert(text, source, target)
        assert result.succeeded
        assert _has_verify_warning(result)

    def test_warnings_are_deduplicated(self):
        result = ConversionResult.ok("x", ["a", "b", "a"])
        assert result.warnings == ("a", "b")


class TestHelpers:
    def test_split_clauses_ignores_literals(self):
        clauses = split_sql_clauses("SELECT name FROM account WHERE name = 'from where'")
        assert clauses["WHERE"] == "name = 'from where'"

    def test_clause_order_enforced(self):
        with pytest.raises(QueryConversionError):
            split_sql_clauses("SELECT name WHERE x = 1 FROM account")

    def test_parse_from_clause(self):
        primary, joins = parse_from_clause("account AS a LEFT OUTER JOIN contact c ON a.primarycontactid = c.contactid")
        assert (primary.name, primary.alias) == ("account", "a")
        assert joins[0].table.name == "contact"
        assert joins[0].join_type == "LEFT OUTER JOIN"

    def test_condition_operators(self):
        text, warnings = convert_sql_condition("revenue >= 100 OR NOT name <> 'x'")
        assert text == "revenue ge 100 or not name ne 'x'"
        assert warnings == []

    def test_like_contains(self):
        text, _ = convert_sql_condition("name NOT LIKE '%corp%'")
        assert text == "not contains(name,'corp')"

    @pytest.mark.parametrize("value,expected", [
        ("10", "10"),
        ("true", "true"),
        ("00000000-0000-0000-0000-000000000001", "00000000-0000-0000-0000-000000000001"),
        ("O'Neil", "'O''Neil'"),
    ])
    def test_format_odata_literal(self, value, expected):
        assert format_odata_literal(value) == expected
