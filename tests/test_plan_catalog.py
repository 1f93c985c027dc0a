import pytest
from decimal import Decimal
from models import Plan
from services.exceptions import NotFoundError, ValidationError
from services.plan_catalog import get_active_plan, get_plan, list_active_plans, seed_default_plans

def test_seed_default_plans_is_idempotent(db):
    created = seed_default_plans()
    assert [p.name for p in created] == ['Basic Plan', 'Family Plan', 'Premium Plan']
    assert seed_default_plans() == []
    assert Plan.query.count() == 3

def test_seeded_limits_and_prices(plans):
    assert plans['basic'].price == Decimal('29.99')
    assert (plans['family'].children_limit, plans['family'].sessions_limit, plans['family'].storage_limit) == (3, 10, 5120)
    assert plans['premium'].features[-1] == 'Personalized learning plans'

def test_list_active_plans_orders_by_price_and_hides_retired(db, plans):
    plans['family'].is_active = False
    db.session.commit()
    assert [p.name for p in list_active_plans()] == ['Basic Plan', 'Premium Plan']

def test_get_plan(plans):
    assert get_plan(plans['basic'].id).name == 'Basic Plan'
    with pytest.raises(NotFoundError):
        get_plan(9999)
    with pytest.raises(NotFoundError):
        get_plan(None)

def test_get_active_plan_rejects_retired(db, plans):
    plans['premium'].is_active = False
    db.session.commit()
    with pytest.raises(ValidationError):
        get_active_plan(plans['premium'].id)

@pytest.mark.parametrize('features', ['Single child access', ['Email support', ''], ['Email support', 3]])
def test_plan_features_must_be_list_of_strings(db, features):
    with pytest.raises(ValueError):
        Plan(name='Broken Plan', price=Decimal('9.99'), features=features)

def test_plan_features_keep_order(db):
    plan = Plan(name='Ordered Plan', price=Decimal('9.99'), features=[' First ', 'Second'])
    assert plan.features == ['First', 'Second']

def test_seed_plans_cli_command(app, db):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['seed-plans'])
    assert 'Created 3 plan(s).' in result.output
    assert Plan.query.count() == 3
