"""
conftest.py - Shared pytest fixtures for multidelegate tests

Provides common fixtures used across unit, functional and conformance tests:
- A votable token with a funded deployer
- Plain and optimized processors bound to that token
"""

import pytest

from multidelegate import (
    BatchProcessor,
    OptimizedBatchProcessor,
    MAX_AMOUNT,
)

from tests.helpers import (
    MINT_AMOUNT,
    PROCESSOR_ADDRESS,
    OPTIMIZED_PROCESSOR_ADDRESS,
    new_token,
)


@pytest.fixture
def token():
    """Token with the deployer holding MINT_AMOUNT."""
    return new_token(deployer=MINT_AMOUNT)


@pytest.fixture
def processor(token):
    """Plain processor; the deployer has approved it for everything."""
    proc = BatchProcessor(
        token,
        address=PROCESSOR_ADDRESS,
        owner="deployer",
        uri="http://localhost:8080/{id}",
        verbose=False,
    )
    token.approve("deployer", proc.address, MAX_AMOUNT)
    return proc


@pytest.fixture
def optimized_processor(token):
    """Optimized processor on the same token as the plain one."""
    proc = OptimizedBatchProcessor(
        token,
        address=OPTIMIZED_PROCESSOR_ADDRESS,
        owner="deployer",
        uri="http://localhost:8080/{id}",
        verbose=False,
    )
    token.approve("deployer", proc.address, MAX_AMOUNT)
    return proc


@pytest.fixture(params=[BatchProcessor, OptimizedBatchProcessor], ids=["plain", "optimized"])
def any_processor(request, token):
    """Runs a test once against each processor variant."""
    proc = request.param(token, address=PROCESSOR_ADDRESS, owner="deployer", verbose=False)
    token.approve("deployer", proc.address, MAX_AMOUNT)
    return proc
