import os
import pytest
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from tools.oracle_client import RelayClient


@pytest.mark.skipif(not (os.getenv('ESCROW_RELAY_URL') and os.getenv('REPORTER_PRIVATE_KEY')),
                    reason='ESCROW_RELAY_URL / REPORTER_PRIVATE_KEY not set')
def test_relay_integration():
    """Integration test against a running relay.

    Requires environment variables:
      - ESCROW_RELAY_URL
      - REPORTER_PRIVATE_KEY

    Skipped when they are absent so it can live in CI but only run when
    configured.
    """
    client = RelayClient(base_url=os.environ['ESCROW_RELAY_URL'],
                         private_key=os.environ['REPORTER_PRIVATE_KEY'])
    assert isinstance(client.is_trusted(), bool)
    bets = client._get("/bets")
    assert isinstance(bets, dict)
    assert 'bets' in bets
    assert 'total' in bets
