from core.config import MqttSettings, Settings


def test_mqtt_defaults_are_secure():
    cfg = MqttSettings()
    assert cfg.tls_enable is True
    assert cfg.tls_verify is True
    assert cfg.topic == "mrhasan/heart"
    assert cfg.username is None and cfg.password is None


def test_nested_env_overrides(monkeypatch):
    monkeypatch.setenv("MQTT__HOST", "broker.example")
    monkeypatch.setenv("MQTT__PASSWORD", "s3cret")
    monkeypatch.setenv("MQTT__TLS_VERIFY", "false")
    monkeypatch.setenv("TELEMETRY_DATA_TYPE", "ppg_analysis")
    s = Settings()
    assert s.mqtt.host == "broker.example"
    assert s.mqtt.password == "s3cret"
    assert s.mqtt.tls_verify is False
    assert s.TELEMETRY_DATA_TYPE == "ppg_analysis"


def test_cors_origins_accepts_json_list(monkeypatch):
    monkeypatch.setenv("CORS_ORIGINS", '["http://a.test", "http://b.test"]')
    assert Settings().CORS_ORIGINS == ["http://a.test", "http://b.test"]
