import io
import logging

from rwa_risk import logging_setup
from rwa_risk.risk_engine.deviation_guard import DeviationGuard, DeviationState


def _configure_logging_to_stream() -> tuple[logging.Logger, io.StringIO]:
    stream = io.StringIO()
    logging_setup.configure_logging(debug=2, stream_target=stream)
    logger = logging.getLogger("test_logging")
    logger.setLevel(logging.DEBUG)
    return logger, stream


def test_sensitive_data_is_redacted_from_logs() -> None:
    logger, stream = _configure_logging_to_stream()

    logger.debug(
        "GET https://www.alphavantage.co/query?function=GLOBAL_QUOTE&symbol=MSFT&apikey=%s",
        "AV_SHOULD_NOT_LEAK",
    )
    logger.debug("POST https://api.telegram.org/bot123456:ABCdefSECRET/sendMessage")
    logger.debug("Actuation settings: %s", {"telegram_token": "tg_should_not_leak", "chat_id": "-100"})

    output = stream.getvalue()

    assert "AV_SHOULD_NOT_LEAK" not in output
    assert "ABCdefSECRET" not in output
    assert "tg_should_not_leak" not in output
    assert "-100" in output
    assert output.count(logging_setup.REDACTED) >= 3


def test_non_sensitive_messages_remain_intact() -> None:
    logger, stream = _configure_logging_to_stream()

    message = "Risk cycle completed for PAXG"
    logger.info(message)

    assert message in stream.getvalue()


def test_redaction_applies_to_external_handlers() -> None:
    stream = io.StringIO()
    logging_setup.configure_logging(debug=2, stream_target=stream)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter("%(message)s"))

    external_logger = logging.getLogger("external.http")
    external_logger.handlers = [handler]
    external_logger.propagate = False
    external_logger.setLevel(logging.DEBUG)

    external_logger.debug("calling /query?apikey=%s", "external_secret")

    assert "external_secret" not in stream.getvalue()
    assert logging_setup.REDACTED in stream.getvalue()


def test_redact_leaves_plain_text_alone() -> None:
    assert logging_setup.redact("PAXG deviation 25.16%") == "PAXG deviation 25.16%"


def test_verbosity_maps_to_root_level() -> None:
    assert logging_setup.configure_logging(debug=0, stream_target=io.StringIO()).level == logging.WARNING
    assert logging_setup.configure_logging(debug=1, stream_target=io.StringIO()).level == logging.INFO
    assert logging_setup.configure_logging(debug=2, stream_target=io.StringIO()).level == logging.DEBUG


def test_context_fields_are_rendered_with_the_message() -> None:
    stream = io.StringIO()
    logging_setup.configure_logging(debug=1, stream_target=stream)

    DeviationGuard(DeviationState({"PAXG": 240.5}), max_deviation_pct=0.05).check("PAXG", 180.0)

    line = stream.getvalue().strip()
    assert "Circuit breaker tripped" in line
    assert "symbol=PAXG" in line
    assert "limit=0.05" in line
    assert "previous_price=240.5" in line


def test_context_fields_are_redacted() -> None:
    logger, stream = _configure_logging_to_stream()

    logger.error(
        "Actuation request failed",
        extra={"error": "POST /bot123456:ABCdefSECRET/sendMessage refused", "telegram_token": "tg_secret"},
    )

    output = stream.getvalue()
    assert "ABCdefSECRET" not in output
    assert "tg_secret" not in output
    assert "error=POST /bot" in output
    assert f"telegram_token={logging_setup.REDACTED}" in output


def test_debug_to_level_clamps_out_of_range_values() -> None:
    levels = [logging_setup.debug_to_level(debug) for debug in (-1, 0, 1, 2, 5)]

    assert levels == [logging.WARNING, logging.WARNING, logging.INFO, logging.DEBUG, logging.DEBUG]
