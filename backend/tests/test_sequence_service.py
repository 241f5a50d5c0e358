"""Order number allocation."""

import pytest

from orderengine.extensions import db
from orderengine.models import OrderSequence
from orderengine.services.sequence_service import next_order_number, SequenceError


def test_creates_sequence_on_first_use(db_session):
    assert next_order_number() == 1
    db.session.commit()
    assert next_order_number() == 2
    db.session.commit()

    seq = db.session.query(OrderSequence).filter_by(name="orders").one()
    assert seq.next_number == 3


def test_continues_existing_sequence(db_session, order_sequence):
    order_sequence.next_number = 41
    db.session.commit()

    assert next_order_number() == 41
    db.session.commit()


def test_rollback_releases_number(db_session, order_sequence):
    assert next_order_number() == 1
    db.session.rollback()
    assert next_order_number() == 1


def test_name_required(db_session):
    with pytest.raises(SequenceError):
        next_order_number("")
