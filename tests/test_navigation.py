"""
Unit tests for NavigationSync.
"""

from chatsync.core.chat_store import ChatStore
from chatsync.core.navigation import NavigationSync
from conftest import make_chat


class TestNavigationSync:
    """Selection <-> location query parameter."""

    def test_select_writes_param(self):
        store = ChatStore([make_chat("a")])
        nav = NavigationSync(store, "http://app.test/chat")
        nav.select("a")
        assert store.active_chat_id == "a"
        assert nav.location == "http://app.test/chat?chatId=a"
        assert nav.requested_chat_id == "a"

    def test_clear_removes_param(self):
        store = ChatStore([make_chat("a")])
        nav = NavigationSync(store, "http://app.test/chat?chatId=a&tab=2")
        nav.reconcile()
        nav.clear()
        assert store.active_chat_id is None
        assert nav.location == "http://app.test/chat?tab=2"

    def test_known_id_adopted(self):
        store = ChatStore([make_chat("a"), make_chat("b")])
        nav = NavigationSync(store)
        assert nav.navigate("http://localhost/?chatId=b") == "b"
        assert store.active_chat_id == "b"

    def test_stale_id_kept_while_loading(self):
        store = ChatStore()
        store.loading = True
        nav = NavigationSync(store, "http://localhost/?chatId=zzz")
        assert nav.reconcile() is None
        assert nav.requested_chat_id == "zzz"

    def test_stale_id_dropped_after_loading(self):
        store = ChatStore([make_chat("a")])
        nav = NavigationSync(store, "http://localhost/?chatId=zzz")
        assert nav.reconcile() is None
        assert nav.requested_chat_id is None
        assert store.active_chat_id is None
        assert "chatId" not in nav.location

    def test_no_param_clears_selection(self):
        store = ChatStore([make_chat("a")])
        store.set_active("a")
        nav = NavigationSync(store, "http://localhost/")
        nav.reconcile()
        assert store.active_chat_id is None

    def test_custom_param_name(self):
        store = ChatStore([make_chat("a")])
        nav = NavigationSync(store, "http://localhost/", param="c")
        nav.select("a")
        assert nav.location == "http://localhost/?c=a"
