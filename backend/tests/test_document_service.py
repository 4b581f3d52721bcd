# Overview: Pytest coverage for per-shop document numbering.

import pytest

from repairflow.errors import ValidationError
from repairflow.models import DocumentSequence
from repairflow.services.document_service import next_document_number


class TestDocumentNumbers:
    def test_sequential_per_type(self, db_session, shop):
        assert next_document_number(shop_id=shop.id, document_type="TICKET") == "FIX-0001"
        assert next_document_number(shop_id=shop.id, document_type="TICKET") == "FIX-0002"
        assert next_document_number(shop_id=shop.id, document_type="INVOICE") == "INV-0001"
        assert next_document_number(shop_id=shop.id, document_type="WARRANTY_CLAIM") == "WC-0001"
        db_session.commit()

        seq = db_session.query(DocumentSequence).filter_by(shop_id=shop.id, document_type="TICKET").one()
        assert seq.next_number == 3

    def test_independent_per_shop(self, db_session, shop, other_shop):
        assert next_document_number(shop_id=shop.id, document_type="ESTIMATE") == "EST-0001"
        assert next_document_number(shop_id=other_shop.id, document_type="ESTIMATE") == "EST-0001"
        assert next_document_number(shop_id=shop.id, document_type="ESTIMATE") == "EST-0002"
        db_session.commit()

    def test_numbers_are_unique_after_many_allocations(self, db_session, shop):
        numbers = [next_document_number(shop_id=shop.id, document_type="TICKET") for _ in range(25)]
        db_session.commit()
        assert len(set(numbers)) == 25
        assert numbers[-1] == "FIX-0025"

    def test_unknown_type(self, db_session, shop):
        with pytest.raises(ValidationError):
            next_document_number(shop_id=shop.id, document_type="RECEIPT")

    def test_shop_required(self, db_session):
        with pytest.raises(ValidationError):
            next_document_number(shop_id=None, document_type="TICKET")
