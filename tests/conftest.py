import os
import sys

import pytest

# 保证项目根目录在 sys.path 上，'app'、'config'、'music_apis' 可以直接导入
_TESTS_DIR = os.path.dirname(__file__)
_ROOT_DIR = os.path.abspath(os.path.join(_TESTS_DIR, os.pardir))
if _ROOT_DIR not in sys.path:
    sys.path.insert(0, _ROOT_DIR)

from tests.support import stubs as test_stubs


@pytest.fixture(autouse=True)
def _isolate_db(monkeypatch, tmp_path):
    """每个测试使用独立的 sqlite 文件"""
    import database

    monkeypatch.setattr(database, "DB_FILE", str(tmp_path / "music_test.db"))
    yield


@pytest.fixture
def stubs():
    return test_stubs


@pytest.fixture
def router():
    from proxy_router import ProxyRouter

    return ProxyRouter(enabled=True, auto_https=True)


@pytest.fixture
def service(router):
    from service import MusicService

    adapters = {
        "netease": test_stubs.FakeAdapter("netease", songs=[
            test_stubs.make_song("1", "晴天", ["周杰伦"], album="叶惠美"),
            test_stubs.make_song("2", "七里香", ["周杰伦"], album="七里香"),
        ], lyric="[00:01.00]故事的小黄花\n[00:03.50]从出生那年就飘着"),
        "kugou": test_stubs.FakeAdapter("kugou"),
    }
    svc = MusicService(adapters=adapters, router=router, persist=True,
                       duration_probe=lambda url: 180)
    yield svc
    svc.close()


@pytest.fixture
def app(service):
    import app as app_module

    application = app_module.create_app(service=service)
    application.config["TESTING"] = True
    yield application


@pytest.fixture
def client(app):
    return app.test_client()
