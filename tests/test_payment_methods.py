import pytest
from models import Payment, PaymentMethod
from services import payment_methods as payment_methods_module
from services.exceptions import ConstraintViolation, NotFoundError, ValidationError
from services.payment_methods import (
    add_payment_method, delete_payment_method, get_default_payment_method,
    list_payment_methods, resolve_payment_method, set_default_payment_method,
)
from utils.helpers import detect_card_type

def _defaults(user_id):
    return PaymentMethod.query.filter_by(user_id=user_id, is_default=True).count()

def _card(valid_card, number):
    card = dict(valid_card)
    card['card_number'] = number
    return card

def test_first_card_becomes_default(user, valid_card, now):
    method = add_payment_method(user.id, valid_card, now=now)
    assert method.is_default is True
    assert method.last_four == '1111'
    assert method.card_type == 'visa'
    assert get_default_payment_method(user.id).id == method.id

def test_card_number_and_cvv_are_not_stored(user, valid_card, now):
    method = add_payment_method(user.id, valid_card, now=now)
    assert not hasattr(method, 'card_number')
    assert not hasattr(method, 'cvv')
    assert method.to_dict()['last_four'] == '1111'

def test_second_card_is_not_default_unless_requested(user, payment_method, valid_card, now):
    second = add_payment_method(user.id, _card(valid_card, '5500000000000004'), now=now)
    assert second.is_default is False
    assert second.card_type == 'mastercard'
    assert _defaults(user.id) == 1

def test_make_default_clears_other_defaults(user, payment_method, valid_card, now):
    second = add_payment_method(user.id, _card(valid_card, '5500000000000004'), make_default=True, now=now)
    assert second.is_default is True
    assert PaymentMethod.query.filter_by(id=payment_method.id).one().is_default is False
    assert _defaults(user.id) == 1

def test_is_default_flag_in_card_details(user, payment_method, valid_card, now):
    card = _card(valid_card, '6011000000000004')
    card['is_default'] = True
    second = add_payment_method(user.id, card, now=now)
    assert second.is_default is True
    assert _defaults(user.id) == 1

@pytest.mark.parametrize('flag, expected', [
    ('false', False), ('0', False), ('no', False), ('', False), (0, False),
    ('true', True), ('on', True), (1, True),
])
def test_is_default_flag_is_read_as_a_boolean(user, payment_method, valid_card, now, flag, expected):
    card = _card(valid_card, '6011000000000004')
    card['is_default'] = flag
    second = add_payment_method(user.id, card, now=now)
    assert second.is_default is expected
    assert _defaults(user.id) == 1

@pytest.mark.parametrize('flag', ['maybe', 2, ['true']])
def test_unreadable_is_default_flag_is_rejected(user, payment_method, valid_card, now, flag):
    card = _card(valid_card, '6011000000000004')
    card['is_default'] = flag
    with pytest.raises(ValidationError) as excinfo:
        add_payment_method(user.id, card, now=now)
    assert excinfo.value.details['field'] == 'is_default'
    assert PaymentMethod.query.filter_by(user_id=user.id).count() == 1

def test_card_writes_lock_the_user_row(mocker, user, valid_card, now):
    lock = mocker.spy(payment_methods_module, 'lock_user')
    first = add_payment_method(user.id, valid_card, now=now)
    second = add_payment_method(user.id, _card(valid_card, '5500000000000004'), now=now)
    set_default_payment_method(user.id, second.id)
    delete_payment_method(user.id, first.id)
    assert lock.call_count == 4
    assert {call.args for call in lock.call_args_list} == {(user.id,)}

def test_adding_a_card_for_an_unknown_user(db, valid_card, now):
    with pytest.raises(NotFoundError):
        add_payment_method(9999, valid_card, now=now)
    assert PaymentMethod.query.count() == 0

def test_exactly_one_default_after_any_sequence(user, valid_card, now):
    first = add_payment_method(user.id, valid_card, now=now)
    second = add_payment_method(user.id, _card(valid_card, '5500000000000004'), now=now)
    third = add_payment_method(user.id, _card(valid_card, '6011000000000004'), make_default=True, now=now)
    assert _defaults(user.id) == 1

    set_default_payment_method(user.id, second.id)
    assert _defaults(user.id) == 1
    assert get_default_payment_method(user.id).id == second.id

    delete_payment_method(user.id, second.id)
    assert _defaults(user.id) == 1

    delete_payment_method(user.id, first.id)
    assert _defaults(user.id) == 1
    assert get_default_payment_method(user.id).id == third.id

def test_deleting_default_promotes_lowest_remaining_id(user, valid_card, now):
    first = add_payment_method(user.id, valid_card, now=now)
    second = add_payment_method(user.id, _card(valid_card, '5500000000000004'), now=now)
    third = add_payment_method(user.id, _card(valid_card, '6011000000000004'), now=now)

    promoted = delete_payment_method(user.id, first.id)
    assert promoted.id == second.id
    assert PaymentMethod.query.filter_by(id=second.id).one().is_default is True
    assert PaymentMethod.query.filter_by(id=third.id).one().is_default is False

def test_deleting_non_default_promotes_nothing(user, payment_method, valid_card, now):
    second = add_payment_method(user.id, _card(valid_card, '5500000000000004'), now=now)
    assert delete_payment_method(user.id, second.id) is None
    assert get_default_payment_method(user.id).id == payment_method.id

def test_cannot_delete_only_card(user, payment_method):
    with pytest.raises(ConstraintViolation):
        delete_payment_method(user.id, payment_method.id)
    assert PaymentMethod.query.filter_by(user_id=user.id).count() == 1
    assert get_default_payment_method(user.id).id == payment_method.id

def test_deleted_card_keeps_its_payments(db, user, payment_method, plans, valid_card, now):
    from services.subscriptions import subscribe
    subscribe(user.id, plans['basic'].id, now=now)
    second = add_payment_method(user.id, _card(valid_card, '5500000000000004'), now=now)

    delete_payment_method(user.id, payment_method.id)

    payment = Payment.query.filter_by(user_id=user.id).one()
    assert payment.payment_method_id is None
    assert get_default_payment_method(user.id).id == second.id

def test_cannot_touch_another_users_card(user, other_user, payment_method):
    with pytest.raises(NotFoundError):
        set_default_payment_method(other_user.id, payment_method.id)
    with pytest.raises(NotFoundError):
        delete_payment_method(other_user.id, payment_method.id)
    with pytest.raises(NotFoundError):
        resolve_payment_method(other_user.id, payment_method.id)

def test_unknown_card_raises_not_found(user, payment_method):
    with pytest.raises(NotFoundError):
        set_default_payment_method(user.id, 9999)

def test_resolve_falls_back_to_default(user, payment_method):
    assert resolve_payment_method(user.id).id == payment_method.id

def test_resolve_without_cards_returns_none(user):
    assert resolve_payment_method(user.id) is None

def test_list_orders_default_first(user, payment_method, valid_card, now):
    second = add_payment_method(user.id, _card(valid_card, '5500000000000004'), now=now)
    listed = list_payment_methods(user.id)
    assert [m.id for m in listed] == [payment_method.id, second.id]

@pytest.mark.parametrize('field, value', [
    ('card_number', '4111 1111 1111 1111'),
    ('card_number', '411111111111'),
    ('card_holder', ''),
    ('card_holder', 'x' * 256),
    ('expiry_month', 13),
    ('expiry_month', 0),
    ('expiry_year', 2024),
    ('expiry_year', 2046),
    ('cvv', '12'),
    ('cvv', '12a'),
])
def test_invalid_card_details_are_rejected(user, valid_card, now, field, value):
    valid_card[field] = value
    with pytest.raises(ValidationError) as excinfo:
        add_payment_method(user.id, valid_card, now=now)
    assert field in excinfo.value.details['fields']
    assert PaymentMethod.query.count() == 0

def test_expiry_year_bounds_are_inclusive(user, valid_card, now):
    valid_card['expiry_year'] = now.year
    add_payment_method(user.id, valid_card, now=now)
    valid_card['expiry_year'] = now.year + 20
    add_payment_method(user.id, valid_card, now=now)
    assert PaymentMethod.query.filter_by(user_id=user.id).count() == 2

@pytest.mark.parametrize('number, expected', [
    ('4111111111111111', 'visa'),
    ('5100000000000000', 'mastercard'),
    ('5599999999999999', 'mastercard'),
    ('3400000000000000', 'amex'),
    ('3700000000000000', 'amex'),
    ('6011000000000004', 'discover'),
    ('6500000000000000', 'discover'),
    ('5600000000000000', 'unknown'),
    ('9999999999999999', 'unknown'),
    ('', 'unknown'),
])
def test_detect_card_type(number, expected):
    assert detect_card_type(number) == expected
