"""
Tests for core.config (UserConfig and helpers).
"""

import pytest

from picnexus.core.config import (
    UserConfig, R2Config, WebDAVConfig, AccountConfig, LinkPrefixConfig, get_active_prefix, mask_secret, sanitize_config,
)


# ============================================================================
# Serialization and Migration
# ============================================================================

class TestUserConfigSerialization:
    """Test suite for camelCase (de)serialization."""

    def test_empty_dict_gives_defaults(self):
        config = UserConfig.from_dict({})
        assert config.enabled_services == []
        assert config.output_format == "baidu"
        assert config.effective_primary_service is None

    def test_round_trip(self):
        data = {
            'enabledServices': ['smms', 'alpha'],
            'services': {'smms': {'enabled': True, 'token': 't'}},
            'outputFormat': 'r2',
            'r2': {'accountId': 'acc', 'bucketName': 'b', 'publicDomain': 'https://cdn.example'},
            'webdav': {'url': 'https://dav.example', 'username': 'u', 'password': 'p', 'remotePath': '/x/'},
            'linkPrefixConfig': {'enabled': True, 'prefixList': ['https://p1/'], 'selectedIndex': 0},
        }
        config = UserConfig.from_dict(data)
        restored = UserConfig.from_dict(config.to_dict())
        assert restored.enabled_services == ['smms', 'alpha']
        assert restored.service_options('smms')['token'] == 't'
        assert restored.output_format == 'r2'
        assert restored.r2.public_domain == 'https://cdn.example'
        assert restored.webdav.remote_path == '/x/'
        assert restored.link_prefix.prefix_list == ['https://p1/']

    def test_legacy_weibo_cookie_migrates(self):
        """The flat weiboCookie field becomes services.weibo.cookie."""
        config = UserConfig.from_dict({'weiboCookie': 'SUB=abc'})
        assert config.service_options('weibo')['cookie'] == 'SUB=abc'
        assert config.enabled_services == ['weibo']

    def test_unknown_output_format_falls_back(self):
        assert UserConfig.from_dict({'outputFormat': 'nope'}).output_format == 'baidu'

    def test_effective_primary_service(self):
        config = UserConfig(enabled_services=['b', 'a'])
        assert config.effective_primary_service == 'b'
        config.primary_service = 'a'
        assert config.effective_primary_service == 'a'

    def test_copy_is_independent(self):
        config = UserConfig(enabled_services=['a'], services={'a': {'cookie': '1'}})
        clone = config.copy()
        clone.set_service_option('a', 'cookie', '2')
        assert config.service_options('a')['cookie'] == '1'

    def test_snapshot_is_deep(self):
        config = UserConfig(services={'a': {'cookie': '1'}})
        snap = config.snapshot()
        config.set_service_option('a', 'cookie', '2')
        assert snap['services']['a']['cookie'] == '1'


# ============================================================================
# Sub-configs
# ============================================================================

class TestSubConfigs:
    """Test suite for is_configured/can_relogin flags."""

    def test_r2_is_configured(self):
        assert not R2Config().is_configured
        assert R2Config(account_id='a', access_key_id='k', secret_access_key='s', bucket_name='b').is_configured

    def test_webdav_is_configured(self):
        assert not WebDAVConfig(url='https://dav').is_configured
        assert WebDAVConfig(url='https://dav', username='u', password='p').is_configured

    def test_account_can_relogin(self):
        assert not AccountConfig(username='u', password='p').can_relogin
        assert AccountConfig(allow_user_account=True, username='u', password='p').can_relogin


# ============================================================================
# Link Prefix
# ============================================================================

class TestActivePrefix:
    """Test suite for get_active_prefix."""

    def test_disabled(self):
        config = UserConfig.from_dict({'linkPrefixConfig': {'enabled': False, 'prefixList': ['p/']}})
        assert get_active_prefix(config) is None

    def test_selected(self):
        config = UserConfig.from_dict({
            'linkPrefixConfig': {'enabled': True, 'prefixList': ['p1/', 'p2/'], 'selectedIndex': 1},
        })
        assert get_active_prefix(config) == 'p2/'

    def test_out_of_range_index_uses_first(self):
        config = UserConfig.from_dict({
            'linkPrefixConfig': {'enabled': True, 'prefixList': ['p1/'], 'selectedIndex': 7},
        })
        assert get_active_prefix(config) == 'p1/'

    def test_empty_list(self):
        config = UserConfig(link_prefix=LinkPrefixConfig(enabled=True, prefix_list=[]))
        assert get_active_prefix(config) is None


# ============================================================================
# Secret Masking
# ============================================================================

class TestMasking:
    """Test suite for mask_secret and sanitize_config."""

    @pytest.mark.parametrize("value,prefix,suffix,expected", [
        (None, 0, 0, ""),
        ("   ", 4, 4, ""),
        ("abcdefghijkl", 4, 4, "abcd******ijkl"),
        ("short", 4, 4, "******"),
        ("secret", 0, 0, "******"),
    ])
    def test_mask_secret(self, value, prefix, suffix, expected):
        assert mask_secret(value, prefix, suffix) == expected

    def test_sanitize_masks_everything_sensitive(self):
        config = UserConfig.from_dict({
            'services': {'weibo': {'cookie': 'SUB=1234567890abcdef'}, 'smms': {'token': 'tok-123'}},
            'r2': {'accessKeyId': 'AKIA1234567890', 'secretAccessKey': 'topsecret'},
            'webdav': {'url': 'https://dav', 'username': 'u', 'password': 'pw'},
            'account': {'allowUserAccount': True, 'username': 'me', 'password': 'hunter2'},
        })
        data = sanitize_config(config)
        text = repr(data)
        for secret in ('1234567890abcdef', 'tok-123', 'topsecret', 'hunter2', "'pw'"):
            assert secret not in text
        assert data['services']['weibo']['cookie'].startswith('SUB=1234')
        assert data['webdav']['username'] == 'u'

    def test_sanitize_does_not_mutate(self):
        config = UserConfig.from_dict({'services': {'smms': {'token': 'tok'}}})
        sanitize_config(config)
        assert config.service_options('smms')['token'] == 'tok'
