# test/rentals/test_deposits.py - Security deposits per contract

import pytest
from pydantic import ValidationError

from plugins.rentals.models.deposit import DepositCreate, DepositUpdate
from utils.exceptions import NotFoundError


def _create(**overrides) -> DepositCreate:
    data = {"contractId": "shop-a", "type": "bank_transfer", "amountEUR": 2000, "amountRON": 9950}
    data.update(overrides)
    return DepositCreate.model_validate(data)


class TestDepositService:

    @pytest.mark.asyncio
    async def test_create_and_list(self, services):
        deposit = await services.deposits.create_deposit(_create())

        listed = await services.deposits.list_deposits("shop-a")

        assert [d.id for d in listed] == [deposit.id]
        assert deposit.id.startswith("dep_")
        assert not deposit.is_deposited

    @pytest.mark.asyncio
    async def test_toggle(self, services):
        deposit = await services.deposits.create_deposit(_create())

        toggled = await services.deposits.toggle_deposited(deposit.id)
        again = await services.deposits.toggle_deposited(deposit.id)

        assert toggled.is_deposited
        assert not again.is_deposited

    @pytest.mark.asyncio
    async def test_partial_update(self, services):
        deposit = await services.deposits.create_deposit(_create(note="first"))

        updated = await services.deposits.update_deposit(deposit.id, DepositUpdate(amount_eur=2500))

        assert updated.amount_eur == 2500
        assert updated.note == "first"
        assert updated.created_at == deposit.created_at

    @pytest.mark.asyncio
    async def test_summary_counts_held_amounts(self, services):
        held = await services.deposits.create_deposit(_create(isDeposited=True))
        await services.deposits.create_deposit(_create(isDeposited=True, returned=True, amountEUR=500, amountRON=2500))
        await services.deposits.create_deposit(_create(type="check", amountEUR=100, amountRON=None))

        summary = await services.deposits.summary("shop-a")

        assert summary.count == 3
        assert summary.deposited_count == 2
        assert summary.returned_count == 1
        assert summary.held_eur == held.amount_eur
        assert summary.held_ron == 9950

    @pytest.mark.asyncio
    async def test_delete(self, services):
        deposit = await services.deposits.create_deposit(_create())
        await services.deposits.delete_deposit(deposit.id)

        with pytest.raises(NotFoundError):
            await services.deposits.get_deposit(deposit.id)

    def test_invalid_type(self):
        with pytest.raises(ValidationError):
            _create(type="cash")
