"""Unit tests for the Roles permission checker."""

import asyncio
import gc

import pytest
from eth_abi import encode
from web3 import Web3

from helpers import (
    EOA,
    OTHER_ROLE_KEY,
    ROLE_KEY,
    ROLES,
    SAFE,
    TARGET,
    eoa,
    linear_route,
    mock_provider,
    roles,
    safe,
)
from zodiac_routes.encoding import decode_role_call
from zodiac_routes.errors import MalformedRoute, RpcRequestError
from zodiac_routes.models import (
    ConnectionType,
    IsEnabledConnection,
    MetaTransaction,
    Route,
    StartingPoint,
    Waypoint,
)
from zodiac_routes.options import Options
from zodiac_routes.permissions import (
    CONDITION_VIOLATION_SELECTOR,
    PermissionDenied,
    PermissionViolation,
    check_permissions,
    decode_roles_error,
    determine_role,
    simulate_role_call,
)

OWNS = ConnectionType.OWNS
IS_ENABLED = ConnectionType.IS_ENABLED
IS_MEMBER = ConnectionType.IS_MEMBER

TX = MetaTransaction(to=TARGET, data="0x12345678")

# ConditionViolation(TargetAddressNotAllowed, 0x0)
TARGET_NOT_ALLOWED = (
    "0xd0a9bf58"
    "0000000000000000000000000000000000000000000000000000000000000002"
    "0000000000000000000000000000000000000000000000000000000000000000"
)
# Error(string) revert unrelated to permissions
GENERIC_REVERT = "0x08c379a0" + encode(["string"], ["boom"]).hex()


def condition_violation(status):
    payload = encode(["uint8", "bytes32"], [status, bytes(32)])
    return "0x" + (CONDITION_VIOLATION_SELECTOR + payload).hex()


# ConditionViolation payloads outside the known catalogue
UNKNOWN_STATUS = condition_violation(20)
OK_STATUS = condition_violation(0)
TRUNCATED = "0x" + CONDITION_VIOLATION_SELECTOR.hex()


def reverted(data):
    return RpcRequestError(3, "execution reverted", data)


class TestDecodeRolesError:
    """Mapping revert payloads to permission violations."""

    def test_condition_violation(self):
        """Test that the v2 status code selects the violation."""
        assert decode_roles_error(reverted(TARGET_NOT_ALLOWED)) is (
            PermissionViolation.TARGET_ADDRESS_NOT_ALLOWED
        )

    @pytest.mark.parametrize(
        "status,violation",
        [
            (5, PermissionViolation.OR_VIOLATION),
            (13, PermissionViolation.PARAMETER_NOT_SUBSET_OF_ALLOWED),
            (19, PermissionViolation.ETHER_ALLOWANCE_EXCEEDED),
        ],
    )
    def test_condition_violation_statuses(self, status, violation):
        """Test v2-only statuses."""
        assert decode_roles_error(reverted(condition_violation(status))) is violation

    def test_condition_violation_selector(self):
        """Test the ConditionViolation selector."""
        assert CONDITION_VIOLATION_SELECTOR.hex() == "d0a9bf58"

    def test_parameterless_error(self):
        """Test errors identified by their selector alone."""
        data = Web3.keccak(text="NoMembership()")[:4]

        assert decode_roles_error(reverted("0x" + bytes(data).hex())) is (
            PermissionViolation.NO_MEMBERSHIP
        )

    def test_not_authorized(self):
        """Test the NotAuthorized(address) error."""
        data = bytes(Web3.keccak(text="NotAuthorized(address)")[:4]) + encode(
            ["address"], [EOA]
        )

        assert decode_roles_error(reverted("0x" + data.hex())) is PermissionViolation.NOT_AUTHORIZED

    @pytest.mark.parametrize(
        "data", [None, "0x", GENERIC_REVERT, "no hex here", UNKNOWN_STATUS, OK_STATUS, TRUNCATED]
    )
    def test_unrecognized_revert(self, data):
        """Test that other reverts are not permission violations."""
        assert decode_roles_error(reverted(data)) is None

    def test_nested_error_data(self):
        """Test revert data nested in an error object."""
        assert decode_roles_error(reverted({"data": TARGET_NOT_ALLOWED})) is (
            PermissionViolation.TARGET_ADDRESS_NOT_ALLOWED
        )

    def test_other_errors_are_raised(self):
        """Test that non-RPC failures propagate."""
        with pytest.raises(asyncio.TimeoutError):
            decode_roles_error(asyncio.TimeoutError())


class TestSimulateRoleCall:
    """Gas estimation against a Roles modifier."""

    @pytest.mark.asyncio
    async def test_allowed(self):
        """Test that a successful estimate allows the call."""
        provider = mock_provider(eth_estimateGas="0x5208")

        allowed = await simulate_role_call(
            1, ROLES, "0x12345678", EOA, Options(providers={1: provider})
        )

        assert allowed is True
        provider.request.assert_awaited_once_with(
            "eth_estimateGas",
            [{"to": ROLES, "data": "0x12345678", "from": EOA, "value": "0x0"}],
        )

    @pytest.mark.asyncio
    async def test_denied(self):
        """Test that a permission revert raises with the violation."""
        provider = mock_provider(eth_estimateGas=reverted(TARGET_NOT_ALLOWED))

        with pytest.raises(PermissionDenied) as excinfo:
            await simulate_role_call(1, ROLES, "0x12345678", EOA, Options(providers={1: provider}))

        assert excinfo.value.violation is PermissionViolation.TARGET_ADDRESS_NOT_ALLOWED


class TestCheckPermissions:
    """Simulating the call at the first Roles modifier."""

    @pytest.fixture
    def route(self):
        """EOA member of a Roles modifier enabled on a 2-of-n Safe."""
        return linear_route(eoa(), (roles(), IS_MEMBER), (safe(threshold=2), IS_ENABLED))

    @pytest.mark.asyncio
    async def test_no_roles_on_route(self):
        """Test that routes without Roles are allowed without simulating."""
        provider = mock_provider()
        route = linear_route(eoa(), (safe(threshold=1), OWNS))

        result = await check_permissions([TX], route, Options(providers={1: provider}))

        assert result == {"success": True}
        provider.request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_allowed(self, route):
        """Test that a successful simulation is allowed."""
        provider = mock_provider(eth_estimateGas="0x5208")

        result = await check_permissions([TX], route, Options(providers={1: provider}))

        assert result == {"success": True}
        method, params = provider.request.await_args.args
        assert method == "eth_estimateGas"
        call = params[0]
        assert call["to"] == ROLES
        assert call["from"] == EOA
        assert call["value"] == "0x0"
        decoded = decode_role_call(call["data"], 2)
        assert decoded["transaction"] == TX
        assert decoded["role"] == ROLE_KEY

    @pytest.mark.asyncio
    async def test_denied(self, route):
        """Test that a recognized revert is reported as a violation."""
        provider = mock_provider(eth_estimateGas=reverted(TARGET_NOT_ALLOWED))

        result = await check_permissions([TX], route, Options(providers={1: provider}))

        assert result == {
            "success": False,
            "error": PermissionViolation.TARGET_ADDRESS_NOT_ALLOWED,
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data", [None, GENERIC_REVERT, UNKNOWN_STATUS, OK_STATUS, TRUNCATED])
    async def test_unrecognized_revert_is_allowed(self, route, data):
        """Test that reverts for other reasons count as allowed."""
        provider = mock_provider(eth_estimateGas=reverted(data))

        result = await check_permissions([TX], route, Options(providers={1: provider}))

        assert result == {"success": True}

    @pytest.mark.asyncio
    async def test_transport_failure_propagates(self, route):
        """Test that non-RPC failures are raised to the caller."""
        provider = mock_provider(eth_estimateGas=ConnectionError("down"))

        with pytest.raises(ConnectionError):
            await check_permissions([TX], route, Options(providers={1: provider}))

    @pytest.mark.asyncio
    async def test_safe_member_simulated_from_safe(self):
        """Test that a Safe member is simulated as sender without nonce lookups."""
        provider = mock_provider(eth_estimateGas="0x5208")
        route = linear_route(
            eoa(),
            (safe(threshold=3), OWNS),
            (roles(), IS_MEMBER),
            (safe("0x" + "88" * 20), IS_ENABLED),
        )

        result = await check_permissions([TX], route, Options(providers={1: provider}))

        assert result == {"success": True}
        provider.request.assert_awaited_once()
        call = provider.request.await_args.args[1][0]
        assert call["from"] == SAFE
        assert call["to"] == ROLES

    @pytest.mark.asyncio
    async def test_roles_cannot_initiate(self):
        """Test that a Roles modifier as starting point is a configuration error."""
        start = StartingPoint(account=roles())
        hop = Waypoint(
            account=safe(),
            connection=IsEnabledConnection(from_=start.account.prefixed_address),
        )

        with pytest.raises(MalformedRoute):
            await check_permissions([TX], Route(id="x", waypoints=(start, hop)), Options())


class TestDetermineRole:
    """Racing candidate roles."""

    @pytest.mark.asyncio
    async def test_no_role_allows(self):
        """Test that None is returned when every role violates."""
        provider = mock_provider(eth_estimateGas=reverted(TARGET_NOT_ALLOWED))

        role = await determine_role(
            f"eth:{ROLES}", 2, f"eoa:{EOA}", [ROLE_KEY], TX, Options(providers={1: provider})
        )

        assert role is None

    @pytest.mark.asyncio
    async def test_other_revert_counts_as_allowed(self):
        """Test that a role is returned when the call reverts for another reason."""
        provider = mock_provider(eth_estimateGas=RpcRequestError(-32015, "RPC Request failed."))

        role = await determine_role(
            f"eth:{ROLES}", 2, f"eoa:{EOA}", [ROLE_KEY], TX, Options(providers={1: provider})
        )

        assert role == ROLE_KEY

    @pytest.mark.asyncio
    async def test_first_allowed_role_wins(self):
        """Test that the permitted role is found among violating ones."""

        def estimate(params):
            if decode_role_call(params[0]["data"], 2)["role"] == OTHER_ROLE_KEY:
                return "0x5208"
            raise reverted(TARGET_NOT_ALLOWED)

        provider = mock_provider(eth_estimateGas=estimate)

        role = await determine_role(
            f"eth:{ROLES}",
            2,
            f"eoa:{EOA}",
            [ROLE_KEY, OTHER_ROLE_KEY],
            TX,
            Options(providers={1: provider}),
        )

        assert role == OTHER_ROLE_KEY

    @pytest.mark.asyncio
    async def test_losing_outcomes_are_retrieved(self):
        """Test that violations settling alongside the winner are not reported as unhandled."""
        unhandled = []
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(lambda _loop, context: unhandled.append(context))

        def estimate(params):
            if decode_role_call(params[0]["data"], 2)["role"] == OTHER_ROLE_KEY:
                return "0x5208"
            raise reverted(TARGET_NOT_ALLOWED)

        try:
            role = await determine_role(
                f"eth:{ROLES}",
                2,
                f"eoa:{EOA}",
                [OTHER_ROLE_KEY, ROLE_KEY, "0x" + "ef" * 32],
                TX,
                Options(providers={1: mock_provider(eth_estimateGas=estimate)}),
            )
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert role == OTHER_ROLE_KEY
        assert unhandled == []
