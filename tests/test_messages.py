import json

from cablegate.messages import (
    ApplicationError,
    CommandResult,
    ConnectResult,
    SessionEnv,
    Status,
    confirmation_message,
    rejection_message,
)


def test_confirmation_message_carries_identifier():
    identifier = '{"channel":"ChatChannel","id":"42"}'
    decoded = json.loads(confirmation_message(identifier))
    assert decoded == {"identifier": identifier, "type": "confirm_subscription"}


def test_rejection_message_carries_identifier():
    identifier = '{"channel":"ChatChannel"}'
    decoded = json.loads(rejection_message(identifier))
    assert decoded == {"identifier": identifier, "type": "reject_subscription"}


def test_confirmation_and_rejection_differ_only_in_type():
    conf = json.loads(confirmation_message("x"))
    rej = json.loads(rejection_message("x"))
    assert conf["identifier"] == rej["identifier"] == "x"
    assert conf["type"] != rej["type"]


def test_application_error_message_and_result():
    result = ConnectResult(status=Status.ERROR)
    err = ApplicationError("Failed", result)
    assert str(err) == "Application error: Failed"
    assert err.error_msg == "Failed"
    assert err.result is result


def test_session_env_defaults_are_independent():
    first = SessionEnv(url="/cable")
    second = SessionEnv(url="/cable")
    first.headers["cookie"] = "token"
    assert second.headers == {}
    assert first.connection_state is None and first.channel_states is None


def test_command_result_defaults():
    res = CommandResult()
    assert res.status is Status.SUCCESS
    assert res.streams == [] and res.transmissions == []
    assert res.stop_all_streams is False