from pulse_bridge.domain.exchange import Exchange
from pulse_bridge.domain.pulse import Pulse


def test_original_message_restored_after_changes() -> None:
    exchange = Exchange.from_message(b"raw", {"id": "event-1", "nested": {"a": 1}})

    exchange.body = "changed"
    exchange.headers["nested"]["a"] = 2
    exchange.set_header("extra", "x")
    exchange.set_property("kept", True)
    exchange.use_original_message()

    assert exchange.body == b"raw"
    assert exchange.headers == {"id": "event-1", "nested": {"a": 1}}
    assert exchange.get_property("kept") is True


def test_body_as_text() -> None:
    assert Exchange().body_as_text() == ""
    assert Exchange(body=bytearray(b"abc")).body_as_text() == "abc"
    assert Exchange(body=12).body_as_text() == "12"


def test_header_and_property_helpers() -> None:
    exchange = Exchange()

    exchange.set_header("h", 1)
    exchange.set_property("p", 2)
    exchange.remove_header("h")
    exchange.remove_header("missing")
    exchange.remove_property("p")

    assert exchange.get_header("h", "default") == "default"
    assert exchange.get_property("p") is None


def test_pulse_json_uses_wire_names() -> None:
    pulse = Pulse.from_json('{"eventContext": {"businessKeyName": "messageID", "filterMap": {"r": "na"}}}')

    assert pulse.data is None
    assert pulse.event_context.business_key_name == "messageID"
    assert '"businessKeyName":"messageID"' in pulse.to_json()
    assert '"data"' not in pulse.to_json()
