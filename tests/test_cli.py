from unittest.mock import Mock, patch

from sqlalchemy.orm import sessionmaker

from assistant import cli


class TestCli:
    def test_init_db(self, capsys):
        with patch("assistant.cli.init_db") as init_db:
            assert cli.main(["init-db"]) == 0

        init_db.assert_called_once_with()
        assert "Database tables created" in capsys.readouterr().out

    def test_set_webhook_requires_url(self, capsys):
        assert cli.main(["set-webhook"]) == 1
        assert "--url is required" in capsys.readouterr().out

    def test_send_rejects_bad_user_id(self, capsys):
        assert cli.main(["send", "--user-id", "nope"]) == 1
        assert "Invalid user id: nope" in capsys.readouterr().out

    def test_set_webhook(self, ctx, capsys):
        telegram = Mock()
        telegram.get_webhook_info.return_value = {
            "result": {"url": "https://bot.example.com/webhooks/telegram", "pending_update_count": 2}
        }
        ctx.messengers["telegram"] = telegram

        with patch("assistant.cli.build_app_context", return_value=ctx):
            assert cli.main(["set-webhook", "--url", "https://bot.example.com/"]) == 0

        telegram.set_webhook.assert_called_once_with("https://bot.example.com/webhooks/telegram")
        out = capsys.readouterr().out
        assert "Pending updates: 2" in out

    def test_set_webhook_mismatch(self, ctx, capsys):
        telegram = Mock()
        telegram.get_webhook_info.return_value = {"result": {"url": "", "last_error_message": "Bad gateway"}}
        ctx.messengers["telegram"] = telegram

        with patch("assistant.cli.build_app_context", return_value=ctx):
            assert cli.main(["set-webhook", "--url", "https://bot.example.com"]) == 1

        out = capsys.readouterr().out
        assert "Last error: Bad gateway" in out
        assert "URL mismatch" in out

    def test_run_once(self, ctx, engine, capsys):
        with patch("assistant.cli.build_app_context", return_value=ctx), patch(
            "assistant.cli.SessionLocal", sessionmaker(bind=engine)
        ):
            assert cli.main(["run-once"]) == 0

        assert "morning=0 evening=0 failed=0" in capsys.readouterr().out
