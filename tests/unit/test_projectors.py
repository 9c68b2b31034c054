"""Tests for payload projection and photo attachments."""
import base64
import json
import logging
from decimal import Decimal

import pytest

from shopsync.models.workshop import Order, PhotoData
from shopsync.sync.projectors import PayloadProjector, PhotoPayloadProjector, build_entry_payload
from shopsync.sync.registry import PayloadError


class TestPayloadProjector:
    def test_snapshot_is_json_ready(self):
        snapshot = PayloadProjector().snapshot(Order(order_uid="ORD-1", amount=Decimal("99.50")))
        json.dumps(snapshot)  # must not raise
        assert snapshot["order_uid"] == "ORD-1"
        assert "status" in snapshot

    def test_project_missing_row_is_none(self, registry, test_session):
        descriptor = registry.resolve("orders")
        assert descriptor.projector.project(test_session, descriptor, ("ORD-404",)) is None


class TestPhotoPayloadProjector:
    def test_attach_adds_file_content(self, photo_root):
        (photo_root / "P1.png").write_bytes(b"\x89PNG-bytes")
        projector = PhotoPayloadProjector(storage_root=str(photo_root))

        payload = projector.attach({"photo_uid": "P1"}, ("P1",))

        assert base64.b64decode(payload["photo_base64"]) == b"\x89PNG-bytes"
        assert payload["photo_extension"] == ".png"

    def test_missing_file_keeps_metadata_and_warns(self, photo_root, caplog):
        projector = PhotoPayloadProjector(storage_root=str(photo_root))

        with caplog.at_level(logging.WARNING):
            payload = projector.attach({"photo_uid": "P1", "comment": "rear bumper"}, ("P1",))

        assert payload == {"photo_uid": "P1", "comment": "rear bumper"}
        assert "P1" in caplog.text

    def test_missing_root_directory_is_tolerated(self, tmp_path):
        projector = PhotoPayloadProjector(storage_root=str(tmp_path / "nope"))
        assert projector.attach({"photo_uid": "P1"}, ("P1",)) == {"photo_uid": "P1"}

    def test_store_writes_file(self, tmp_path):
        root = tmp_path / "incoming"
        projector = PhotoPayloadProjector(storage_root=str(root))
        payload = {"photo_base64": base64.b64encode(b"jpeg").decode(), "photo_extension": "jpg"}

        projector.store(payload, ("P7",))

        assert (root / "P7.jpg").read_bytes() == b"jpeg"

    def test_store_ignores_bad_base64(self, photo_root, caplog):
        projector = PhotoPayloadProjector(storage_root=str(photo_root))
        with caplog.at_level(logging.WARNING):
            projector.store({"photo_base64": "***", "photo_extension": ".jpg"}, ("P8",))
        assert not (photo_root / "P8.jpg").exists()

    def test_store_without_attachment_is_noop(self, photo_root):
        PhotoPayloadProjector(storage_root=str(photo_root)).store({"photo_uid": "P9"}, ("P9",))
        assert list(photo_root.iterdir()) == []

    def test_non_string_fields_are_rejected(self, photo_root):
        projector = PhotoPayloadProjector(storage_root=str(photo_root))

        with pytest.raises(PayloadError):
            projector.check({"photo_base64": "aGk=", "photo_extension": 5})
        with pytest.raises(PayloadError):
            projector.store({"photo_base64": 12345}, ("P10",))
        assert list(photo_root.iterdir()) == []

    def test_check_accepts_strings_and_absent_fields(self, photo_root):
        projector = PhotoPayloadProjector(storage_root=str(photo_root))
        projector.check({"photo_base64": "aGk=", "photo_extension": ".jpg"})
        projector.check({"photo_uid": "P11"})


class TestBuildEntryPayload:
    def test_stored_snapshot_wins(self, registry, test_session):
        test_session.add(Order(order_uid="ORD-1", status="900"))
        test_session.commit()

        payload = build_entry_payload(test_session, registry, "orders", "ORD-1", "UPDATE", '{"status": "220"}')

        assert payload == {"status": "220"}

    def test_reconstructs_from_current_row(self, registry, test_session):
        test_session.add(Order(order_uid="ORD-1", status="900"))
        test_session.commit()

        payload = build_entry_payload(test_session, registry, "orders", "ORD-1", "UPDATE", None)

        assert payload["status"] == "900"

    def test_unreadable_snapshot_is_rebuilt(self, registry, test_session):
        test_session.add(Order(order_uid="ORD-1", status="900"))
        test_session.commit()

        payload = build_entry_payload(test_session, registry, "orders", "ORD-1", "UPDATE", "{broken")

        assert payload["status"] == "900"

    def test_delete_has_no_payload(self, registry, test_session):
        assert build_entry_payload(test_session, registry, "orders", "ORD-1", "DELETE", '{"a": 1}') is None

    def test_missing_row_without_snapshot_is_none(self, registry, test_session):
        assert build_entry_payload(test_session, registry, "orders", "ORD-404", "UPDATE", None) is None

    def test_unknown_table_returns_stored_snapshot(self, registry, test_session):
        payload = build_entry_payload(test_session, registry, "invoices", "1", "UPDATE", '{"total": 5}')
        assert payload == {"total": 5}

    def test_photo_attachment_added_to_stored_snapshot(self, registry, photo_root, test_session):
        (photo_root / "P1.jpg").write_bytes(b"jpeg")
        test_session.add(PhotoData(photo_uid="P1", position="front"))
        test_session.commit()

        payload = build_entry_payload(
            test_session, registry, "photo_data", "P1", "INSERT", '{"photo_uid": "P1", "position": "front"}'
        )

        assert payload["position"] == "front"
        assert payload["photo_extension"] == ".jpg"
