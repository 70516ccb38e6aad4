from __future__ import annotations

import sys
from pathlib import Path
import unittest

from hypothesis import given, strategies as st

PROJECT_ROOT = Path(__file__).resolve().parent.parent
API_CODE_PATH = PROJECT_ROOT / "api-code"
if str(API_CODE_PATH) not in sys.path:
    sys.path.insert(0, str(API_CODE_PATH))

from domain import TERMINAL_STATUSES, DeployStatus, is_valid_transition


ALLOWED_EDGES = {
    (DeployStatus.PENDING, DeployStatus.DEPLOYING),
    (DeployStatus.DEPLOYING, DeployStatus.SUCCESS),
    (DeployStatus.DEPLOYING, DeployStatus.FAILED),
    (DeployStatus.SUCCESS, DeployStatus.ROLLED_BACK),
    (DeployStatus.DEPLOYING, DeployStatus.CANCELLED),
}

statuses = st.sampled_from(list(DeployStatus))


class DeployStateMachineTest(unittest.TestCase):
    @given(current=statuses, new=statuses)
    def test_only_documented_edges_are_valid(self, current, new):
        self.assertEqual(is_valid_transition(current, new), (current, new) in ALLOWED_EDGES)

    @given(sequence=st.lists(statuses, min_size=1, max_size=12))
    def test_random_sequences_only_follow_allowed_edges(self, sequence):
        state = DeployStatus.PENDING
        for proposed in sequence:
            if is_valid_transition(state, proposed):
                self.assertIn((state, proposed), ALLOWED_EDGES)
                state = proposed
            else:
                self.assertNotIn((state, proposed), ALLOWED_EDGES)

    def test_terminal_states_have_no_exit_except_rollback(self):
        for terminal in TERMINAL_STATUSES:
            for target in DeployStatus:
                expected = terminal == DeployStatus.SUCCESS and target == DeployStatus.ROLLED_BACK
                self.assertEqual(is_valid_transition(terminal, target), expected)

    def test_accepts_string_values(self):
        self.assertTrue(is_valid_transition("deploying", "success"))
        self.assertFalse(is_valid_transition("deploying", "deploying"))
        self.assertTrue(DeployStatus.CANCELLED.is_terminal)
        self.assertFalse(DeployStatus.DEPLOYING.is_terminal)


if __name__ == "__main__":
    unittest.main()
