import struct
import unittest
from dataclasses import replace
from types import SimpleNamespace
from typing import Dict, List, Optional

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from presale_ops.blockchain.base import PresaleRecord
from presale_ops.blockchain.layouts import encode_instruction, encode_presale
from presale_ops.blockchain.signer import KeypairSigner
from presale_ops.core.config import PresaleConfig
from presale_ops.core.exceptions import ActionFailed, ReconcileError, RemoteReadError
from presale_ops.services.orchestrator import TOKEN_PROGRAM, TransactionOrchestrator
from presale_ops.services.reader import PresaleReader
from presale_ops.services.reconcile import (
    PresaleNotFound,
    ReconcileStep,
    ReconciliationWorkflow,
)

from tests.factories import (
    account_response,
    make_config,
    make_presale,
    random_pubkey,
    token_account_data,
)

UNIT = 10**9


class FakeLedger:
    """In-memory presale that plays both the reader and the orchestrator."""

    signer = None

    def __init__(
        self,
        config: PresaleConfig,
        presale: Optional[PresaleRecord],
        vault: int = 0,
        owner_tokens: int = 0,
    ):
        self.config = config
        self.presale = presale
        self.vault = vault
        self.owner_tokens = owner_tokens
        self.writes: List[str] = []
        self.transfers: List[int] = []
        self.fail_on: Optional[str] = None

    # reader side

    async def get_presale(self, fresh: bool = False) -> Optional[PresaleRecord]:
        if self.fail_on == "get_presale":
            raise RemoteReadError("presale", ConnectionError("node down"))
        return self.presale

    async def get_vault_balance(self, fresh: bool = False) -> int:
        return self.vault

    async def get_token_balance(self, owner: Pubkey, fresh: bool = False) -> int:
        assert owner == self.config.owner
        return self.owner_tokens

    # orchestrator side

    def _write(self, name: str) -> str:
        if self.fail_on == name:
            raise ActionFailed(name, "simulated rejection")
        self.writes.append(name)
        return f"sig-{len(self.writes)}"

    async def reopen_finalize_sale(self) -> str:
        sig = self._write("reopen_finalize_sale")
        self.presale = replace(self.presale, is_finalized=False)
        return sig

    async def open_sale(self) -> str:
        sig = self._write("open_sale")
        self.presale = replace(self.presale, is_open=True)
        return sig

    async def finalize_sale(self) -> str:
        sig = self._write("finalize_sale")
        self.presale = replace(self.presale, is_open=False, is_finalized=True)
        return sig

    async def fund_vault(self, amount: int) -> str:
        sig = self._write("fund_vault")
        self.transfers.append(amount)
        self.owner_tokens -= amount
        self.vault += amount
        return sig


class ReconcileTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.config = make_config()

    def ledger(self, is_open: bool, is_finalized: bool, **kwargs) -> FakeLedger:
        presale = make_presale(self.config, is_open=is_open, is_finalized=is_finalized)
        return FakeLedger(self.config, presale, **kwargs)

    def workflow(self, ledger: FakeLedger, **kwargs) -> ReconciliationWorkflow:
        return ReconciliationWorkflow(ledger, ledger, **kwargs)


class ReconcileStateTests(ReconcileTestCase):
    async def test_open_and_funded_issues_no_writes(self):
        ledger = self.ledger(True, False, vault=500 * UNIT, owner_tokens=10 * UNIT)

        outcome = await self.workflow(ledger).run()

        self.assertEqual(ledger.writes, [])
        self.assertFalse(outcome.changed)
        self.assertTrue(outcome.is_open)
        self.assertEqual(outcome.vault_balance, 500 * UNIT)

    async def test_finalized_sale_reopened_exactly_once(self):
        ledger = self.ledger(False, True, vault=0, owner_tokens=2_000_000 * UNIT)

        outcome = await self.workflow(ledger).run()

        self.assertEqual(
            ledger.writes, ["reopen_finalize_sale", "fund_vault", "open_sale"]
        )
        self.assertEqual(ledger.writes.count("reopen_finalize_sale"), 1)
        self.assertNotIn("finalize_sale", ledger.writes)
        self.assertTrue(outcome.is_open)
        self.assertFalse(outcome.is_finalized)
        self.assertEqual(
            [a.step for a in outcome.actions],
            [ReconcileStep.REOPEN_FINALIZE, ReconcileStep.FUND_VAULT, ReconcileStep.OPEN_SALE],
        )

    async def test_second_run_is_a_no_op(self):
        ledger = self.ledger(False, True, vault=0, owner_tokens=1_500_000 * UNIT)
        workflow = self.workflow(ledger)

        await workflow.run()
        writes_after_first = list(ledger.writes)
        outcome = await workflow.run()

        self.assertEqual(ledger.writes, writes_after_first)
        self.assertFalse(outcome.changed)
        self.assertEqual(outcome.warnings, [])

    async def test_closed_sale_is_opened(self):
        ledger = self.ledger(False, False, vault=1 * UNIT)

        outcome = await self.workflow(ledger).run()

        self.assertEqual(ledger.writes, ["open_sale"])
        self.assertTrue(outcome.is_open)

    async def test_open_and_finalized_reopens_without_open_sale(self):
        ledger = self.ledger(True, True, vault=1 * UNIT)

        outcome = await self.workflow(ledger).run()

        self.assertEqual(ledger.writes, ["reopen_finalize_sale"])
        self.assertTrue(outcome.is_open)
        self.assertFalse(outcome.is_finalized)

    async def test_missing_presale_aborts_at_first_step(self):
        ledger = FakeLedger(self.config, None)

        with self.assertRaises(ReconcileError) as ctx:
            await self.workflow(ledger).run()

        self.assertEqual(ctx.exception.step, "reopen_finalize")
        self.assertIsInstance(ctx.exception.cause, PresaleNotFound)
        self.assertEqual(ledger.writes, [])


class ReconcileFundingTests(ReconcileTestCase):
    async def test_funded_vault_never_transfers(self):
        for owner_tokens in (0, 5 * UNIT, 3_000_000 * UNIT):
            with self.subTest(owner_tokens=owner_tokens):
                ledger = self.ledger(False, False, vault=1, owner_tokens=owner_tokens)
                await self.workflow(ledger).run()
                self.assertEqual(ledger.transfers, [])

    async def test_transfer_capped_at_ceiling(self):
        ledger = self.ledger(True, False, vault=0, owner_tokens=1_500_000 * UNIT)

        outcome = await self.workflow(ledger).run()

        self.assertEqual(ledger.transfers, [1_000_000 * UNIT])
        self.assertEqual(outcome.vault_balance, 1_000_000 * UNIT)
        self.assertEqual(outcome.actions[0].amount, 1_000_000 * UNIT)

    async def test_transfer_whole_balance_below_ceiling(self):
        ledger = self.ledger(True, False, vault=0, owner_tokens=250 * UNIT)

        await self.workflow(ledger).run()

        self.assertEqual(ledger.transfers, [250 * UNIT])
        self.assertEqual(ledger.owner_tokens, 0)

    async def test_custom_ceiling(self):
        ledger = self.ledger(True, False, vault=0, owner_tokens=500)

        workflow = self.workflow(ledger, funding_ceiling=100)
        await workflow.run()

        self.assertEqual(workflow.funding_ceiling, 100)
        self.assertEqual(ledger.transfers, [100])

    async def test_nothing_to_fund_warns_and_continues(self):
        ledger = self.ledger(False, False, vault=0, owner_tokens=0)

        outcome = await self.workflow(ledger).run()

        self.assertEqual(ledger.transfers, [])
        self.assertEqual(ledger.writes, ["open_sale"])
        self.assertEqual(len(outcome.warnings), 1)
        self.assertIn("no tokens", outcome.warnings[0])


class ReconcileFailureTests(ReconcileTestCase):
    async def test_failed_step_reports_completed_actions(self):
        ledger = self.ledger(False, True, vault=0, owner_tokens=10 * UNIT)
        ledger.fail_on = "open_sale"

        with self.assertRaises(ReconcileError) as ctx:
            await self.workflow(ledger).run()

        err = ctx.exception
        self.assertEqual(err.step, "open_sale")
        self.assertIsInstance(err.cause, ActionFailed)
        self.assertEqual(
            [a.step for a in err.completed],
            [ReconcileStep.REOPEN_FINALIZE, ReconcileStep.FUND_VAULT],
        )

    async def test_rerun_after_failure_resumes(self):
        ledger = self.ledger(False, True, vault=0, owner_tokens=10 * UNIT)
        ledger.fail_on = "fund_vault"
        with self.assertRaises(ReconcileError):
            await self.workflow(ledger).run()
        self.assertEqual(ledger.writes, ["reopen_finalize_sale"])

        ledger.fail_on = None
        outcome = await self.workflow(ledger).run()

        self.assertEqual(
            ledger.writes, ["reopen_finalize_sale", "fund_vault", "open_sale"]
        )
        self.assertEqual(
            [a.step for a in outcome.actions],
            [ReconcileStep.FUND_VAULT, ReconcileStep.OPEN_SALE],
        )

    async def test_read_failure_is_wrapped(self):
        ledger = self.ledger(True, False, vault=1)
        ledger.fail_on = "get_presale"

        with self.assertRaises(ReconcileError) as ctx:
            await self.workflow(ledger).run()

        self.assertIsInstance(ctx.exception.cause, RemoteReadError)
        self.assertEqual(ctx.exception.completed, [])


class FakeRpcClient:
    """AsyncClient stand-in that applies submitted instructions to an in-memory ledger."""

    def __init__(self, config: PresaleConfig, presale: PresaleRecord):
        self.config = config
        self.presale = presale
        # token account -> base units
        self.balances: Dict[Pubkey, int] = {}
        self.sent: List[str] = []

    def credit(self, owner: Pubkey, amount: int) -> None:
        self.balances[self.config.addresses.token_account(owner)] = amount

    def balance(self, owner: Pubkey) -> int:
        return self.balances.get(self.config.addresses.token_account(owner), 0)

    async def get_account_info(self, address, commitment=None):
        if address == self.config.presale_address:
            return account_response(encode_presale(self.presale))
        if address in self.balances:
            return account_response(
                token_account_data(self.balances[address], self.config.token_mint, address)
            )
        return account_response(None)

    async def get_latest_blockhash(self, commitment=None):
        return SimpleNamespace(value=SimpleNamespace(blockhash=Hash.new_unique()))

    async def send_transaction(self, tx, opts=None):
        message = tx.message
        ix = message.instructions[0]
        program = message.account_keys[ix.program_id_index]
        data = bytes(ix.data)

        if program == TOKEN_PROGRAM and data[0] == 3:
            (amount,) = struct.unpack_from("<Q", data, 1)
            source = message.account_keys[ix.accounts[0]]
            dest = message.account_keys[ix.accounts[1]]
            if self.balances.get(source, 0) < amount:
                raise RuntimeError("Transaction simulation failed: insufficient funds")
            self.balances[source] -= amount
            self.balances[dest] = self.balances.get(dest, 0) + amount
            self.sent.append("transfer")
        elif data == encode_instruction("reopen_finalize_sale"):
            self.presale = replace(self.presale, is_finalized=False)
            self.sent.append("reopen_finalize_sale")
        elif data == encode_instruction("open_sale"):
            self.presale = replace(self.presale, is_open=True)
            self.sent.append("open_sale")
        else:
            raise RuntimeError("unexpected instruction")
        return SimpleNamespace(value=Signature.new_unique())

    async def confirm_transaction(self, sig, commitment=None):
        return SimpleNamespace(value=[SimpleNamespace(err=None)])


class ReconcileOverRpcTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.signer = KeypairSigner(Keypair())

    def workflow(self, client: FakeRpcClient) -> ReconciliationWorkflow:
        reader = PresaleReader(client, client.config)
        orchestrator = TransactionOrchestrator(client, client.config, self.signer)
        return ReconciliationWorkflow(reader, orchestrator)

    async def test_second_run_sends_nothing(self):
        config = make_config(owner=self.signer.pubkey())
        client = FakeRpcClient(
            config, make_presale(config, is_open=False, is_finalized=True)
        )
        client.credit(self.signer.pubkey(), 2_000_000 * UNIT)
        workflow = self.workflow(client)

        first = await workflow.run()
        self.assertEqual(client.sent, ["reopen_finalize_sale", "transfer", "open_sale"])
        self.assertTrue(first.is_open)
        self.assertEqual(first.vault_balance, 1_000_000 * UNIT)

        second = await workflow.run()

        self.assertEqual(client.sent, ["reopen_finalize_sale", "transfer", "open_sale"])
        self.assertFalse(second.changed)
        self.assertEqual(second.warnings, [])

    async def test_funds_from_signer_when_config_owner_differs(self):
        config = make_config(owner=random_pubkey())
        client = FakeRpcClient(config, make_presale(config))
        client.credit(self.signer.pubkey(), 300 * UNIT)

        outcome = await self.workflow(client).run()

        self.assertEqual(client.sent, ["transfer"])
        self.assertEqual(outcome.vault_balance, 300 * UNIT)
        self.assertEqual(client.balance(self.signer.pubkey()), 0)

    async def test_config_owner_tokens_are_not_counted_for_signer(self):
        config = make_config(owner=random_pubkey())
        client = FakeRpcClient(config, make_presale(config))
        client.credit(config.owner, 500 * UNIT)

        outcome = await self.workflow(client).run()

        self.assertEqual(client.sent, [])
        self.assertEqual(len(outcome.warnings), 1)
        self.assertEqual(client.balance(config.owner), 500 * UNIT)


if __name__ == "__main__":
    unittest.main()
