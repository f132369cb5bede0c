"""test_layer.py — Unit tests for itembank_shared helper modules.

Run from shared_layer directory:
    PYTHONPATH=python python3 -m pytest test_layer.py -v
"""

from __future__ import annotations

import base64
import json
import os
import sys
import threading
import time
import unittest
from decimal import Decimal
from unittest.mock import MagicMock, patch

# Ensure the layer's python/ directory is importable.
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "python"))

from itembank_shared import config
from itembank_shared.aws_clients import _get_ddb, _reset_clients
from itembank_shared.dynamodb import DynamoItemStore
from itembank_shared.errors import InvalidContinuationToken
from itembank_shared.interface import ListPage, clamp_limit
from itembank_shared.memory import MemoryItemStore
from itembank_shared.models import LatestFlag, demoted, matches, new_item, next_version
from itembank_shared.pagination import decode_token, encode_token
from itembank_shared.serialization import _deserialize, _now_ms, _serialize, _serialize_item
from itembank_shared.storage import create_store


class SerializationTests(unittest.TestCase):
    def test_serialize_string(self):
        self.assertEqual(_serialize("hello"), {"S": "hello"})

    def test_serialize_float(self):
        self.assertEqual(_serialize(3.14)["N"], "3.14")

    def test_serialize_nested_float(self):
        result = _serialize({"score": 0.5, "parts": [1.5]})
        self.assertEqual(result["M"]["score"], {"N": "0.5"})
        self.assertEqual(result["M"]["parts"]["L"][0], {"N": "1.5"})

    def test_serialize_item_drops_none(self):
        result = _serialize_item({"id": "x", "options": None})
        self.assertEqual(result, {"id": {"S": "x"}})

    def test_deserialize_item(self):
        item = {
            "name": {"S": "test"},
            "count": {"N": "42"},
            "ratio": {"N": "0.25"},
            "metadata": {"M": {"version": {"N": "3"}}},
        }
        result = _deserialize(item)
        self.assertEqual(result["name"], "test")
        self.assertEqual(result["count"], 42)
        self.assertIsInstance(result["count"], int)
        self.assertEqual(result["ratio"], 0.25)
        self.assertEqual(result["metadata"]["version"], 3)
        self.assertNotIsInstance(result["metadata"]["version"], Decimal)

    def test_now_ms(self):
        self.assertAlmostEqual(_now_ms(), int(time.time() * 1000), delta=2000)


class PaginationTests(unittest.TestCase):
    def test_round_trip(self):
        position = {"id": {"S": "abc"}, "lastModified": {"N": "1700000000000"}}
        self.assertEqual(decode_token(encode_token(position)), position)

    def test_token_is_url_safe_without_padding(self):
        token = encode_token({"offset": 12345})
        self.assertNotIn("=", token)
        self.assertNotIn("+", token)
        self.assertNotIn("/", token)

    def test_garbage_raises(self):
        for bad in ("", "   ", "%%%%", "bm90IGpzb24"):
            with self.assertRaises(InvalidContinuationToken, msg=bad):
                decode_token(bad)

    def test_unknown_format_version_raises(self):
        token = base64.urlsafe_b64encode(json.dumps({"v": 99, "k": {"offset": 1}}).encode()).decode()
        with self.assertRaises(InvalidContinuationToken):
            decode_token(token)

    def test_missing_position_raises(self):
        token = base64.urlsafe_b64encode(json.dumps({"v": 1, "k": []}).encode()).decode()
        with self.assertRaises(InvalidContinuationToken):
            decode_token(token)

    def test_invalid_token_is_value_error(self):
        with self.assertRaises(ValueError):
            decode_token("!!")


class ModelTests(unittest.TestCase):
    def test_latest_flag_wire_values(self):
        self.assertEqual(LatestFlag.of(True).value, "true")
        self.assertEqual(LatestFlag.of(False).value, "false")
        self.assertTrue(LatestFlag("true").is_latest)
        self.assertFalse(LatestFlag("false").is_latest)

    def test_new_item_generates_id_and_version_metadata(self):
        item = new_item({"subject": "S", "metadata": {"author": "a"}}, 10)
        self.assertTrue(item["id"])
        self.assertEqual(item["metadata"], {
            "author": "a", "created": 10, "lastModified": 10, "version": 1, "isLatest": True,
        })

    def test_new_item_ignores_caller_id(self):
        item = new_item({"id": "mine", "subject": "S"}, 10)
        self.assertNotEqual(item["id"], "mine")

    def test_next_version_does_not_mutate_latest(self):
        latest = new_item({"subject": "S", "content": {"question": "q"}, "metadata": {}}, 10)
        nxt = next_version(latest, {"content": {"explanation": "e"}}, 20)
        self.assertEqual(latest["content"], {"question": "q"})
        self.assertEqual(nxt["content"], {"question": "q", "explanation": "e"})
        self.assertEqual(nxt["metadata"]["version"], 2)
        self.assertEqual(nxt["metadata"]["created"], 10)
        self.assertEqual(nxt["metadata"]["lastModified"], 20)

    def test_demoted_copy(self):
        item = new_item({"subject": "S"}, 10)
        old = demoted(item)
        self.assertFalse(old["metadata"]["isLatest"])
        self.assertTrue(item["metadata"]["isLatest"])

    def test_matches_nested_status(self):
        item = {"subject": "S", "metadata": {"status": "approved"}}
        self.assertTrue(matches(item, {"status": "approved", "subject": "S"}))
        self.assertFalse(matches(item, {"status": "draft"}))
        self.assertTrue(matches(item, None))

    def test_matches_unknown_filter_raises(self):
        with self.assertRaises(ValueError):
            matches({}, {"author": "x"})


class InterfaceTests(unittest.TestCase):
    def test_list_page_to_dict(self):
        self.assertEqual(ListPage(items=[{"id": "a"}]).to_dict(), {"items": [{"id": "a"}], "count": 1})
        page = ListPage(items=[], next_token="tok")
        self.assertEqual(page.to_dict(), {"items": [], "count": 0, "nextToken": "tok"})

    def test_clamp_limit(self):
        self.assertEqual(clamp_limit(None, 10, 100), 10)
        self.assertEqual(clamp_limit(0, 10, 100), 1)
        self.assertEqual(clamp_limit(500, 10, 100), 100)
        self.assertEqual(clamp_limit(25, 10, 100), 25)


class MemoryStoreTests(unittest.TestCase):
    def test_offset_pagination(self):
        store = MemoryItemStore()
        for i in range(5):
            store.create({"subject": f"S{i}", "metadata": {"status": "draft"}})
        from itembank_shared.interface import ListQuery

        everything = [i["id"] for i in store.list_latest(ListQuery(limit=100)).items]
        page = store.list_latest(ListQuery(limit=2, offset=2))
        self.assertEqual([i["id"] for i in page.items], everything[2:4])
        self.assertIsNotNone(page.next_token)

    def test_returned_items_are_copies(self):
        store = MemoryItemStore()
        item = store.create({"subject": "S", "metadata": {}})
        item["subject"] = "tampered"
        store.get_latest(item["id"])["metadata"]["version"] = 99
        latest = store.get_latest(item["id"])
        self.assertEqual(latest["subject"], "S")
        self.assertEqual(latest["metadata"]["version"], 1)

    def test_concurrent_updates_are_not_lost(self):
        store = MemoryItemStore()
        item = store.create({"subject": "S", "metadata": {}})
        workers, per_worker = 4, 25

        def work():
            for _ in range(per_worker):
                store.update(item["id"], {"difficulty": 1})

        threads = [threading.Thread(target=work) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        trail = store.audit_trail(item["id"])
        expected = workers * per_worker + 1
        self.assertEqual([v["metadata"]["version"] for v in trail], list(range(1, expected + 1)))
        self.assertEqual(sum(1 for v in trail if v["metadata"]["isLatest"]), 1)


class AwsClientTests(unittest.TestCase):
    def setUp(self):
        _reset_clients()

    def tearDown(self):
        _reset_clients()

    @patch("itembank_shared.aws_clients.boto3")
    def test_get_ddb_singleton(self, mock_boto3):
        mock_boto3.client.return_value = MagicMock()

        result1 = _get_ddb()
        result2 = _get_ddb()

        self.assertIs(result1, result2)
        mock_boto3.client.assert_called_once()

    @patch("itembank_shared.aws_clients.boto3")
    def test_endpoint_override(self, mock_boto3):
        with patch.object(config, "DYNAMODB_ENDPOINT", "http://localhost:8000"):
            _get_ddb()
        kwargs = mock_boto3.client.call_args.kwargs
        self.assertEqual(kwargs["endpoint_url"], "http://localhost:8000")

    @patch("itembank_shared.aws_clients.boto3")
    def test_no_endpoint_by_default(self, mock_boto3):
        with patch.object(config, "DYNAMODB_ENDPOINT", ""):
            _get_ddb(region="eu-west-1")
        kwargs = mock_boto3.client.call_args.kwargs
        self.assertNotIn("endpoint_url", kwargs)
        self.assertEqual(kwargs["region_name"], "eu-west-1")


class StorageFactoryTests(unittest.TestCase):
    def test_defaults_to_memory(self):
        with patch.object(config, "USE_DYNAMODB", False):
            self.assertIsInstance(create_store(), MemoryItemStore)

    @patch("itembank_shared.aws_clients.boto3")
    def test_flag_selects_dynamodb_without_connecting(self, mock_boto3):
        with patch.object(config, "USE_DYNAMODB", True), patch.object(config, "ITEMS_TABLE", "T1"):
            store = create_store()
        self.assertIsInstance(store, DynamoItemStore)
        self.assertEqual(store.table_name, "T1")
        mock_boto3.client.assert_not_called()

    def test_explicit_argument_wins(self):
        with patch.object(config, "USE_DYNAMODB", True):
            self.assertIsInstance(create_store(use_dynamodb=False), MemoryItemStore)


if __name__ == "__main__":
    unittest.main()
