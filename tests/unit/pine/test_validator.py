"""
Unit tests for the Pine Script validator.

Tests each line-scan rule, aggregation and determinism.
"""

import pytest

from app.services.pine.constants import (
    DIAG_E101_UNBALANCED_PARENS,
    DIAG_E102_UNBALANCED_BRACKETS,
    DIAG_E103_RESERVED_IDENTIFIER,
    DIAG_W101_NO_VERSION,
    DIAG_W102_MISSING_CALL_PARENS,
    DIAG_W103_UNSUPPORTED_VERSION,
    RESERVED_IDENTIFIERS,
)
from app.services.pine.models import DiagnosticKind, Severity
from app.services.pine.validator import (
    ValidatorConfig,
    check_brackets,
    check_namespace_calls,
    check_reserved_identifiers,
    check_version_directive,
    detect_version,
    validate,
)


class TestCheckVersionDirective:
    """Tests for W101/W103."""

    def test_w101_missing_version(self):
        findings = check_version_directive(["plot(close)"])

        assert len(findings) == 1
        assert findings[0].code == DIAG_W101_NO_VERSION
        assert findings[0].severity == Severity.WARNING
        assert findings[0].line == 1
        assert "//@version=6" in findings[0].suggestion

    def test_supported_versions(self):
        assert check_version_directive(["//@version=5"]) == []
        assert check_version_directive(["//@version=6"]) == []

    def test_w103_unsupported_version(self):
        findings = check_version_directive(["// header", "//@version=4"])

        assert len(findings) == 1
        assert findings[0].code == DIAG_W103_UNSUPPORTED_VERSION
        assert findings[0].line == 2


class TestCheckBrackets:
    """Tests for E101/E102."""

    def test_balanced(self):
        assert check_brackets(["plot(ta.sma(close, 10)[1])"]) == []

    def test_e101_unclosed_paren(self):
        findings = check_brackets(["plot(ta.sma(close, 10)"])

        assert len(findings) == 1
        assert findings[0].code == DIAG_E101_UNBALANCED_PARENS
        assert findings[0].severity == Severity.ERROR
        assert findings[0].line == 1
        assert findings[0].column == 5
        assert "missing ')'" in findings[0].message
        assert findings[0].suggestion == "Add a closing ')'"

    def test_e101_unexpected_closer(self):
        findings = check_brackets(["x = close)"])

        assert len(findings) == 1
        assert "Unexpected ')'" in findings[0].message

    def test_e102_brackets(self):
        findings = check_brackets(["x = close[1"])

        assert findings[0].code == DIAG_E102_UNBALANCED_BRACKETS

    def test_brackets_in_strings_ignored(self):
        assert check_brackets(['plot(close, title="(((")']) == []

    def test_comment_lines_ignored(self):
        assert check_brackets(["// plot(close"]) == []

    def test_trailing_comment_ignored(self):
        assert check_brackets(["plot(close) // )"]) == []

    def test_indented_continuation(self):
        lines = ["plot(close,", "     color=color.red)"]

        assert check_brackets(lines) == []

    def test_unindented_next_line_does_not_continue(self):
        lines = ["plot(close,", "x = 1"]

        findings = check_brackets(lines)
        assert len(findings) == 1
        assert findings[0].line == 1


class TestCheckNamespaceCalls:
    """Tests for W102."""

    def test_w102_missing_parens(self):
        findings = check_namespace_calls(["x = ta.sma"])

        assert len(findings) == 1
        assert findings[0].code == DIAG_W102_MISSING_CALL_PARENS
        assert findings[0].severity == Severity.WARNING
        assert findings[0].suggestion == "Add parentheses: ta.sma(...)"

    def test_called_function_ok(self):
        assert check_namespace_calls(["x = ta.sma(close, 3)"]) == []

    def test_value_members_ok(self):
        assert check_namespace_calls(["x = ta.tr + math.pi"]) == []

    def test_other_namespaces(self):
        findings = check_namespace_calls(["x = math.abs", "y = str.length"])

        assert [f.line for f in findings] == [1, 2]

    def test_inside_string_ignored(self):
        assert check_namespace_calls(['x = "ta.sma"']) == []


class TestCheckReservedIdentifiers:
    """Tests for E103."""

    @pytest.mark.parametrize("name", sorted(RESERVED_IDENTIFIERS))
    def test_each_reserved_name(self, name):
        findings = check_reserved_identifiers([f"{name} = close"])

        assert len(findings) == 1
        assert findings[0].code == DIAG_E103_RESERVED_IDENTIFIER
        assert findings[0].severity == Severity.ERROR

    def test_reassignment_checked(self):
        assert len(check_reserved_identifiers(["range := 1"])) == 1

    def test_keyword_argument_not_flagged(self):
        assert check_reserved_identifiers(['label(x, text="a")']) == []

    def test_keyword_argument_on_continuation_line(self):
        """Keyword arguments of a call split over indented lines are left alone."""
        lines = ["plot(x,", '     title = "a",', '     text = "b")']

        assert check_reserved_identifiers(lines) == []

    def test_unindented_line_after_open_bracket_checked(self):
        """An open bracket does not carry over to an unindented line."""
        findings = check_reserved_identifiers(["plot(x,", "text = 1"])

        assert [f.line for f in findings] == [2]

    def test_multiline_call_script_is_valid(self):
        script = (
            "//@version=6\nx = ta.sma(close, 10)\n"
            'plot(x,\n     title = "a",\n     text = "b")'
        )

        assert validate(script).has_errors is False

    def test_right_hand_side_not_flagged(self):
        assert check_reserved_identifiers(["x = range"]) == []

    def test_identifier_boundaries(self):
        """Names that merely contain a reserved word are fine."""
        assert check_reserved_identifiers(["ranges = 1", "texture = 2"]) == []

    def test_comparison_not_assignment(self):
        assert check_reserved_identifiers(["plot(text == 1 ? 1 : 0)"]) == []

    def test_law_one_error_on_line_two(self):
        result = validate("x = 1\nreturn = 2")

        assert result.error_count == 1
        assert result.errors[0].line == 2


class TestDetectVersion:
    def test_reads_directive(self):
        assert detect_version("//@version=5\nplot(close)") == 5

    def test_default_six(self):
        assert detect_version("plot(close)") == 6

    def test_spaces_allowed(self):
        assert detect_version("// @version = 5") == 5


class TestValidate:
    """Tests for validate() aggregation."""

    def test_clean_script(self):
        result = validate("//@version=6\nplot(ta.sma(close, 20))")

        assert result.diagnostics == []
        assert result.version == 6
        assert not result.has_errors

    def test_errors_sorted_first(self):
        result = validate("x = ta.sma\nreturn = 1")

        severities = [d.severity for d in result.diagnostics]
        assert severities[0] == Severity.ERROR
        assert result.error_count == 1
        assert result.warning_count == 2

    def test_all_diagnostics_are_validation_kind(self):
        result = validate("plot(close\nx = ta.ema")

        assert all(d.kind == DiagnosticKind.VALIDATION for d in result.diagnostics)

    def test_config_disables_rules(self):
        config = ValidatorConfig(check_version=False, check_namespace_calls=False)

        result = validate("x = ta.sma", config)
        assert result.diagnostics == []

    def test_never_raises_on_garbage(self):
        result = validate('@@@ "unterminated\n)]\n\t\t(')

        assert result.has_errors

    def test_deterministic(self):
        script = "x = ta.sma\nplot(close\nreturn = 1"

        first = validate(script).diagnostics
        second = validate(script).diagnostics
        assert first == second

    def test_seed_reserved_identifier(self):
        result = validate("return = close")

        assert result.has_errors
        assert result.errors[0].line == 1

    def test_seed_missing_version(self):
        result = validate("plot(close)")

        assert result.error_count == 0
        assert result.warning_count == 1
        assert result.diagnostics[0].code == DIAG_W101_NO_VERSION

    def test_seed_unbalanced_parens(self):
        result = validate("plot(ta.sma(close, 10)")

        assert result.errors[0].line == 1
        assert "')'" in result.errors[0].suggestion
