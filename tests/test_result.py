from chatcommerce.services.result import Result


class TestResultSuccess:
    def test_success_creates_ok_result(self):
        result = Result.success("CONV-1")
        assert result.ok is True
        assert result.value == "CONV-1"
        assert result.error is None

    def test_success_without_value(self):
        result = Result.success()
        assert result.ok is True
        assert result.value is None


class TestResultFailure:
    def test_failure_creates_not_ok_result(self):
        result = Result.failure("Stock insuficiente", "insufficient_stock")
        assert result.ok is False
        assert result.error == "Stock insuficiente"
        assert result.error_code == "insufficient_stock"
        assert result.value is None

    def test_failure_default_code(self):
        assert Result.failure("boom").error_code == "unknown"


class TestResultUnwrapOr:
    def test_unwrap_or_returns_value_on_success(self):
        assert Result.success(3).unwrap_or(0) == 3

    def test_unwrap_or_returns_default_on_failure(self):
        assert Result.failure("Error", "code").unwrap_or(0) == 0
