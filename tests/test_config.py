import os
import unittest
from unittest.mock import patch

from core.config import Config

EXAMPLE_CONFIG = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "config.example.yaml")


class ConfigTestCase(unittest.TestCase):
    def _env(self, config, **env):
        base = {k: v for k, v in os.environ.items() if k not in ("APP_ENV", "NODE_ENV")}
        base.update(env)
        with patch.dict(os.environ, base, clear=True):
            return config.get("app.env")

    def test_example_config_falls_back_to_node_env(self):
        config = Config(config_path=EXAMPLE_CONFIG)
        self.assertEqual(self._env(config, NODE_ENV="production"), "production")
        self.assertEqual(self._env(config, APP_ENV="staging", NODE_ENV="production"), "staging")
        self.assertEqual(self._env(config), "development")

    def test_builtin_defaults_match_example(self):
        config = Config(config_path=os.path.join(os.path.dirname(EXAMPLE_CONFIG), "missing-config.yaml"))
        self.assertEqual(self._env(config, NODE_ENV="production"), "production")
        self.assertEqual(config.get("membership.sweep_hour"), 1)

    def test_get_bool(self):
        config = Config(config_path=EXAMPLE_CONFIG)
        with patch.dict(os.environ, {"ALIPAY_SANDBOX": "true"}):
            self.assertTrue(config.get_bool("alipay.sandbox"))
        with patch.dict(os.environ, {"ALIPAY_SANDBOX": "0"}):
            self.assertFalse(config.get_bool("alipay.sandbox"))


if __name__ == "__main__":
    unittest.main()
