from pathlib import Path

from peer_quiz.config.settings import Settings
from peer_quiz.server.media_uploads import media_kind, safe_file_name


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("PEER_QUIZ_PORT", "PEER_QUIZ_HOST", "PEER_QUIZ_DATA_DIR", "PEER_QUIZ_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None)
        assert settings.port == 3009
        assert settings.max_upload_mb == 50
        assert settings.log_level == "INFO"

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PEER_QUIZ_PORT", "4100")
        monkeypatch.setenv("PEER_QUIZ_DATA_DIR", str(tmp_path))
        settings = Settings(_env_file=None)
        assert settings.port == 4100
        assert settings.data_dir == Path(tmp_path)


class TestMediaHelpers:
    def test_media_kind(self):
        assert media_kind("image/jpeg") == "image"
        assert media_kind("VIDEO/mp4") == "video"
        assert media_kind("application/pdf") is None
        assert media_kind(None) is None

    def test_safe_file_name_drops_directories(self):
        assert safe_file_name("../../etc/pass wd.png") == "pass_wd.png"
        assert safe_file_name("...") == "upload"
