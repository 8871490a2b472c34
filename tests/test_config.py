# =============================================================================
# Config Parsing Tests
# =============================================================================

import pytest

from mbwatch.config import Config, ConfigError, default_config_path, get_home
from mbwatch.core import Group, ImapAccount, MailStore, parse_store_ref


class TestParse:
    """Parsing of mbsync config text."""

    def test_parses_stores_channels_and_groups(self, sample_config_text):
        config = Config.parse(sample_config_text)

        assert [s.name for s in config.imap_stores] == ["personal-remote", "work-remote"]
        assert [c.name for c in config.channels] == ["personal", "work"]
        assert [g.name for g in config.groups] == ["everything"]

        personal = config.imap_stores[0]
        assert personal.host == "imap.example.com"
        assert personal.user == "me@example.com"
        assert personal.password == "s3cret"
        assert personal.password_command is None
        assert personal.cert_file is None

        work = config.imap_stores[1]
        assert work.port == 143
        assert work.password_command == "echo 123"
        assert work.cert_file == "/etc/ssl/work.pem"

    def test_parsing_is_deterministic(self, sample_config_text):
        assert Config.parse(sample_config_text) == Config.parse(sample_config_text)

    def test_quoted_and_unquoted_values(self):
        config = Config.parse(
            "IMAPStore a\nPass \"abc\"\n"
            "IMAPStore b\nPass abc\n"
            "IMAPStore c\nPassCmd \"pass show mail\"\n"
        )
        assert config.imap_stores[0].password == "abc"
        assert config.imap_stores[1].password == "abc"
        assert config.imap_stores[2].password_command == "pass show mail"

    def test_lone_quote_is_kept(self):
        config = Config.parse('IMAPStore a\nPass "\n')
        assert config.imap_stores[0].password == '"'

    def test_port_defaults_to_993(self):
        config = Config.parse("IMAPStore a\nHost h\n")
        assert config.imap_stores[0].port is None
        assert config.imap_stores[0].effective_port == 993

    def test_explicit_port(self):
        config = Config.parse("IMAPStore a\nPort 143\n")
        assert config.imap_stores[0].effective_port == 143

    @pytest.mark.parametrize("port", ["imaps", "0", "70000", ""])
    def test_invalid_port_is_an_error(self, port):
        with pytest.raises(ConfigError, match="line 2"):
            Config.parse(f"IMAPStore a\nPort {port}\n")

    def test_fields_go_to_the_most_recent_store(self):
        config = Config.parse("IMAPStore a\nHost one\nIMAPStore b\nHost two\n")
        assert config.imap_stores[0].host == "one"
        assert config.imap_stores[1].host == "two"

    def test_store_field_before_any_store_is_an_error(self):
        with pytest.raises(ConfigError, match="Host"):
            Config.parse("Host imap.example.com\n")

    def test_store_field_inside_channel_is_an_error(self):
        text = "IMAPStore a\nHost one\nChannel c\nHost two\n"
        with pytest.raises(ConfigError, match="line 4"):
            Config.parse(text)

    def test_channel_field_inside_store_is_an_error(self):
        with pytest.raises(ConfigError):
            Config.parse("IMAPStore a\nFar :a:\n")

    def test_connection_field_inside_maildir_store_is_an_error(self):
        with pytest.raises(ConfigError, match="MaildirStore"):
            Config.parse("IMAPStore a\nMaildirStore local\nHost h\n")

    def test_unknown_keyword_with_value_is_an_error(self):
        with pytest.raises(ConfigError, match="Frobnicate"):
            Config.parse("IMAPStore a\nFrobnicate yes\n")

    def test_unknown_keyword_without_value_is_ignored(self):
        config = Config.parse("IMAPStore a\nEnd\nHost h\n")
        assert config.imap_stores[0].host == "h"

    def test_comments_blank_lines_and_indentation(self):
        text = "# accounts\n\nIMAPStore a\n    Host h\n\t# nested comment\n  User u\n"
        config = Config.parse(text)
        assert config.imap_stores == [MailStore(name="a", host="h", user="u")]

    def test_ignored_mbsync_keywords(self, sample_config_text):
        # Path, Inbox, Patterns, Create appear in the sample
        config = Config.parse(sample_config_text + "SyncState *\nExpunge Both\n")
        assert len(config.channels) == 2

    def test_legacy_master_slave(self):
        config = Config.parse("Channel c\nMaster :remote:\nSlave :local:\n")
        assert config.channels[0].far == ":remote:"
        assert config.channels[0].near == ":local:"

    def test_group_channels(self):
        config = Config.parse("Group g\nChannels a:INBOX,b:Archive\n")
        assert config.groups[0].channels == [("a", "INBOX"), ("b", "Archive")]

    def test_group_entry_without_colon_has_empty_mailbox(self):
        config = Config.parse("Group g\nChannels a:INBOX,b\n")
        assert config.groups[0].channels == [("a", "INBOX"), ("b", "")]

    def test_imap_account(self):
        config = Config.parse(
            "IMAPAccount acct\nHost imap.example.com\nUser me\nPassCmd \"echo x\"\n"
            "IMAPStore remote\nAccount acct\n"
        )
        assert config.imap_accounts == [
            ImapAccount(name="acct", host="imap.example.com", user="me", password_command="echo x")
        ]
        assert config.imap_stores[0].account == "acct"

    def test_account_outside_store_is_an_error(self):
        with pytest.raises(ConfigError):
            Config.parse("Channel c\nAccount acct\n")


class TestGroupChannels:
    def test_whitespace_and_empty_entries(self):
        assert Group.parse_channels(" a:INBOX , ,b:Archive,") == [("a", "INBOX"), ("b", "Archive")]

    def test_extra_colons_are_dropped(self):
        assert Group.parse_channels("a:INBOX:extra") == [("a", "INBOX")]


class TestLookups:
    """Name-based lookups on a parsed Config."""

    def test_find_imap_store_by_reference(self, sample_config_text):
        config = Config.parse(sample_config_text)
        store = config.find_imap_store(":work-remote:")
        assert store is not None
        assert store.host == "mail.work.example"

    def test_find_imap_store_with_mailbox_path(self, sample_config_text):
        config = Config.parse(sample_config_text)
        assert config.find_imap_store(":work-remote:Archive").name == "work-remote"

    @pytest.mark.parametrize("ref", ["work-remote", ":work:", ":nope:", "", "::"])
    def test_find_imap_store_misses(self, sample_config_text, ref):
        assert Config.parse(sample_config_text).find_imap_store(ref) is None

    def test_lookups_return_copies(self, sample_config_text):
        config = Config.parse(sample_config_text)
        store = config.find_imap_store(":personal-remote:")
        store.host = "changed"
        group = config.find_group("everything")
        group.channels.clear()

        assert config.imap_stores[0].host == "imap.example.com"
        assert len(config.groups[0].channels) == 2

    def test_find_channel_and_group(self, sample_config_text):
        config = Config.parse(sample_config_text)
        assert config.find_channel("work").far == ":work-remote:"
        assert config.find_channel("missing") is None
        assert config.find_group("everything").name == "everything"
        assert config.find_group("missing") is None

    def test_store_inherits_from_account(self):
        config = Config.parse(
            "IMAPAccount acct\nHost imap.example.com\nPort 143\nUser me\nPass pw\n"
            "IMAPStore remote\nAccount acct\nUser override\n"
        )
        store = config.find_imap_store(":remote:")
        assert store.host == "imap.example.com"
        assert store.effective_port == 143
        assert store.user == "override"
        assert store.password == "pw"

    def test_store_password_command_hides_account_password(self):
        config = Config.parse(
            "IMAPAccount acct\nHost imap.example.com\nPass account-pw\n"
            "IMAPStore remote\nAccount acct\nPassCmd \"pass show mail\"\n"
        )
        store = config.find_imap_store(":remote:")
        assert store.password_command == "pass show mail"
        assert store.password is None

    def test_store_password_hides_account_password_command(self):
        config = Config.parse(
            "IMAPAccount acct\nHost imap.example.com\nPassCmd \"pass show mail\"\n"
            "IMAPStore remote\nAccount acct\nPass store-pw\n"
        )
        store = config.find_imap_store(":remote:")
        assert store.password == "store-pw"
        assert store.password_command is None

    def test_store_without_credential_inherits_both(self):
        config = Config.parse(
            "IMAPAccount acct\nHost imap.example.com\nPassCmd \"pass show mail\"\n"
            "IMAPStore remote\nAccount acct\n"
        )
        store = config.find_imap_store(":remote:")
        assert store.password is None
        assert store.password_command == "pass show mail"

    def test_store_with_unknown_account_is_returned_as_is(self):
        config = Config.parse("IMAPStore remote\nAccount ghost\nHost h\n")
        assert config.find_imap_store(":remote:").host == "h"


class TestStoreRef:
    def test_parse_store_ref(self):
        assert parse_store_ref(":remote:") == ("remote", "")
        assert parse_store_ref(":remote:Archive/2024") == ("remote", "Archive/2024")
        assert parse_store_ref("remote") is None
        assert parse_store_ref(":remote") is None


class TestLoad:
    """Reading config files from disk."""

    def test_load_from_path(self, temp_dir, sample_config_text):
        path = temp_dir / "mbsyncrc"
        path.write_text(sample_config_text)
        assert Config.load(path) == Config.parse(sample_config_text)

    def test_missing_file(self, temp_dir):
        with pytest.raises(ConfigError, match="Unable to read"):
            Config.load(temp_dir / "nope")

    def test_missing_home(self, monkeypatch):
        monkeypatch.delenv("HOME", raising=False)
        with pytest.raises(ConfigError, match="HOME"):
            get_home()

    def test_default_path_is_mbsyncrc(self, temp_dir, monkeypatch):
        monkeypatch.setenv("HOME", str(temp_dir))
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        assert default_config_path() == temp_dir / ".mbsyncrc"

    def test_default_path_falls_back_to_xdg(self, temp_dir, monkeypatch):
        monkeypatch.setenv("HOME", str(temp_dir))
        monkeypatch.setenv("XDG_CONFIG_HOME", str(temp_dir / "xdg"))
        (temp_dir / "xdg").mkdir()
        (temp_dir / "xdg" / "isyncrc").write_text("")
        assert default_config_path() == temp_dir / "xdg" / "isyncrc"

    def test_mbsyncrc_wins_over_xdg(self, temp_dir, monkeypatch):
        monkeypatch.setenv("HOME", str(temp_dir))
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        (temp_dir / ".mbsyncrc").write_text("")
        (temp_dir / ".config").mkdir()
        (temp_dir / ".config" / "isyncrc").write_text("")
        assert default_config_path() == temp_dir / ".mbsyncrc"
