from __future__ import annotations

import unittest

from utils import log_contracts


class LogContractsTests(unittest.TestCase):
    def test_successful_cycle_gets_ok_reason_code(self) -> None:
        row = log_contracts.cycle_event(
            {
                "stage": "done",
                "decision": "submitted",
                "pair": "dai/ngn",
                "elapsed_ms": 1234.56,
                "tx_hash": "0xABCDEF",
            },
            run_tag="rb_a",
        )
        self.assertEqual(row["reason_code"], "CYCLE_OK")
        self.assertEqual(row["reason_category"], "cycle")
        self.assertEqual(row["schema_name"], log_contracts.SCHEMA_CYCLE_EVENT)
        self.assertEqual(row["run_tag"], "rb_a")
        self.assertEqual(row["elapsed_ms"], 1234.6)
        self.assertEqual(row["tx_hash"], "0xabcdef")
        self.assertTrue(row["cycle_id"].startswith("cyc_"))

    def test_failed_cycle_uses_error_code_and_taxonomy(self) -> None:
        row = log_contracts.cycle_event(
            {"cycle_id": "cyc_fixed", "stage": "fetch", "decision": "failed", "error_code": "SOURCE_UNAVAILABLE"},
        )
        self.assertEqual(row["cycle_id"], "cyc_fixed")
        self.assertEqual(row["reason_code"], "SOURCE_UNAVAILABLE")
        self.assertEqual(row["reason_severity"], "WARN")
        self.assertEqual(row["reason_category"], "source")

    def test_unknown_error_code_is_sanitized(self) -> None:
        row = log_contracts.cycle_event({"stage": "simulate", "decision": "failed", "error_code": "unexpected-KeyError"})
        self.assertEqual(row["reason_code"], "UNEXPECTED_KEYERROR")
        self.assertEqual(row["reason_category"], "unknown")

    def test_stage_without_error_maps_to_stage_prefix(self) -> None:
        self.assertEqual(log_contracts.reason_code_for_event(stage="allowance"), "ALLOWANCE_OK")
        self.assertEqual(log_contracts.reason_code_for_event(stage="mystery"), "UNKNOWN")

    def test_cycle_ids_are_stable_for_same_seed(self) -> None:
        first = log_contracts.new_cycle_id("rb", 1_700_000_000.0)
        self.assertEqual(first, log_contracts.new_cycle_id("rb", 1_700_000_000.0))
        self.assertNotEqual(first, log_contracts.new_cycle_id("rb", 1_700_000_001.0))


if __name__ == "__main__":
    unittest.main()
