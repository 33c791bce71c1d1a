import hashlib
import struct
import unittest

from presale_ops.blockchain.base import SaleState, quote_tokens
from presale_ops.blockchain.layouts import (
    BUYER_ACCOUNT_SIZE,
    PRESALE_ACCOUNT_SIZE,
    PRESALE_DISCRIMINATOR,
    LayoutError,
    check_u64,
    decode_buyer,
    decode_presale,
    decode_token_amount,
    encode_buyer,
    encode_instruction,
    encode_presale,
)
from presale_ops.core.constants import U64_MAX
from presale_ops.core.exceptions import InvalidInput

from tests.factories import make_buyer, make_config, make_presale, random_pubkey, token_account_data


class PresaleLayoutTests(unittest.TestCase):
    def setUp(self):
        self.config = make_config()
        self.record = make_presale(self.config, is_open=False, is_finalized=True)

    def test_encoded_size_and_discriminator(self):
        data = encode_presale(self.record)
        self.assertEqual(len(data), PRESALE_ACCOUNT_SIZE)
        self.assertEqual(data[:8], hashlib.sha256(b"account:Presale").digest()[:8])

    def test_decode_reads_every_field(self):
        decoded = decode_presale(encode_presale(self.record))
        self.assertEqual(decoded, self.record)
        self.assertTrue(decoded.is_finalized)
        self.assertFalse(decoded.is_open)

    def test_trailing_bytes_ignored(self):
        decoded = decode_presale(encode_presale(self.record) + b"\x00" * 32)
        self.assertEqual(decoded.rate, self.record.rate)

    def test_short_account_rejected(self):
        with self.assertRaises(LayoutError):
            decode_presale(encode_presale(self.record)[:-1])

    def test_wrong_discriminator_rejected(self):
        data = bytearray(encode_presale(self.record))
        data[0] ^= 0xFF
        with self.assertRaises(LayoutError):
            decode_presale(bytes(data))

    def test_buyer_account_is_not_a_presale(self):
        buyer = make_buyer(self.config, random_pubkey())
        data = encode_buyer(buyer) + bytes(PRESALE_ACCOUNT_SIZE)
        with self.assertRaises(LayoutError):
            decode_presale(data)


class BuyerLayoutTests(unittest.TestCase):
    def test_decode_buyer(self):
        config = make_config()
        buyer = random_pubkey()
        record = make_buyer(config, buyer, contributed_lamports=42, tokens_purchased=7)
        data = encode_buyer(record)
        self.assertEqual(len(data), BUYER_ACCOUNT_SIZE)

        decoded = decode_buyer(data)
        self.assertEqual(decoded.buyer, buyer)
        self.assertEqual(decoded.contributed_lamports, 42)
        self.assertEqual(decoded.tokens_purchased, 7)
        self.assertTrue(decoded.exists)

    def test_presale_account_is_not_a_buyer(self):
        data = PRESALE_DISCRIMINATOR + bytes(BUYER_ACCOUNT_SIZE)
        with self.assertRaises(LayoutError):
            decode_buyer(data)


class TokenAmountTests(unittest.TestCase):
    def test_amount_read_at_offset_64(self):
        data = token_account_data(1_500_000 * 10**9, random_pubkey(), random_pubkey())
        self.assertEqual(decode_token_amount(data), 1_500_000 * 10**9)

    def test_short_token_account_rejected(self):
        with self.assertRaises(LayoutError):
            decode_token_amount(bytes(70))


class InstructionDataTests(unittest.TestCase):
    def test_no_argument_instruction_is_discriminator_only(self):
        data = encode_instruction("open_sale")
        self.assertEqual(data, hashlib.sha256(b"global:open_sale").digest()[:8])

    def test_u64_arguments_are_little_endian(self):
        data = encode_instruction("set_rate", 150)
        self.assertEqual(len(data), 16)
        self.assertEqual(struct.unpack("<Q", data[8:])[0], 150)

    def test_check_u64(self):
        self.assertEqual(check_u64(0, "x"), 0)
        self.assertEqual(check_u64(U64_MAX, "x"), U64_MAX)
        for bad in (-1, U64_MAX + 1, 1.5, "10", True):
            with self.subTest(value=bad):
                with self.assertRaises(InvalidInput):
                    check_u64(bad, "x")


class RecordTests(unittest.TestCase):
    def setUp(self):
        self.config = make_config()

    def test_finalized_takes_precedence_over_open(self):
        record = make_presale(self.config, is_open=True, is_finalized=True)
        self.assertIs(record.state, SaleState.FINALIZED)
        self.assertEqual(record.status_label, "Finalized")

    def test_open_and_closed_states(self):
        self.assertEqual(make_presale(self.config).status_label, "Live")
        closed = make_presale(self.config, is_open=False)
        self.assertIs(closed.state, SaleState.CLOSED_PENDING)
        self.assertEqual(closed.status_label, "Closed")

    def test_progress_is_capped(self):
        record = make_presale(self.config, lamports_raised=300, hard_cap=200)
        self.assertEqual(record.progress_pct, 100.0)
        self.assertEqual(make_presale(self.config, hard_cap=0).progress_pct, 0.0)

    def test_quote_tokens(self):
        # 1 SOL at 1000 tokens/SOL
        self.assertEqual(quote_tokens(10**9, 100_000), 1_000 * 10**9)
        # 0.5 SOL at 1.5 tokens/SOL
        self.assertEqual(quote_tokens(5 * 10**8, 150), 75 * 10**7)
        self.assertEqual(quote_tokens(0, 100_000), 0)


if __name__ == "__main__":
    unittest.main()
