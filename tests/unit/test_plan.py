"""Unit tests for the execution planner."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from helpers import (
    DELAY,
    EOA,
    OTHER_ROLE_KEY,
    ROLE_KEY,
    ROLES,
    SAFE,
    SAFE_2,
    TARGET,
    delay,
    eoa,
    linear_route,
    linear_waypoints,
    mock_provider,
    roles,
    safe,
)
from zodiac_routes.eip712 import safe_transaction_hash
from zodiac_routes.encoding import (
    decode_role_call,
    encode_approve_hash,
    encode_exec_transaction,
    encode_exec_transaction_from_module,
    encode_exec_transaction_with_role,
    encode_execute_next_tx,
    pre_approved_signature,
)
from zodiac_routes.errors import (
    InvalidConnection,
    InvalidDownstreamConnection,
    InvalidUpstreamConnection,
    MalformedRoute,
)
from zodiac_routes.models import (
    ConnectionType,
    ExecutionActionType,
    MetaTransaction,
    OperationType,
    Route,
    SafeTransactionRequest,
    StartingPoint,
    Waypoint,
)
from zodiac_routes.multisend import MULTI_SEND_CALL_ONLY_141, encode_multi_send_batch
from zodiac_routes.options import Options, SafeTransactionProperties
from zodiac_routes.plan import plan_execution
from zodiac_routes.routes import make_route

OWNS = ConnectionType.OWNS
IS_ENABLED = ConnectionType.IS_ENABLED
IS_MEMBER = ConnectionType.IS_MEMBER

TX = MetaTransaction(to=TARGET, value=0, data="0xaabbccdd")

# Transaction and expected role call of a recorded arb1 plan.
RECORDED_TRANSACTION_DATA = (
    "0x70d0f3840000000000000000000000000000000000000000000000000000000000000040000000"
    "00000000000000000000000000000000000000000000000000000002200000000000000000000000"
    "000eb5b03c0303f2f47cd81d7be4275af8ed34757600000000000000000000000000000000000000"
    "00000000000000000000000100000000000000000000000000000000000000000000000000000000"
    "00669cf0cfd096c5d610d4455bcae4bff719d18345939c5d6b20d56c6a1f37d0247ad10f71000000"
    "00000000000000000000000000000000000000000000000000000000020000000000000000000000"
    "00000000000000000000000000000000000000014000000000000000000000000000000000000000"
    "00000000000000000000000160000000000000000000000000000000000000000000000000000000"
    "00000001a00000000000000000000000000000000000000000000000000000000000000016617262"
    "697472756d666f756e646174696f6e2e657468000000000000000000000000000000000000000000"
    "00000000000000000000000000000000000000000000000000000000000000000000000000000000"
    "00000000000000000000000008736e617073686f7400000000000000000000000000000000000000"
    "000000000000000000000000000000000000000000000000000000000000000000000000027b7d00"
    "00000000000000000000000000000000000000000000000000000000000000000000000000000000"
    "00000000000000000000000000000000000000004000000000000000000000000000000000000000"
    "00000000000000000000000080000000000000000000000000000000000000000000000000000000"
    "0000000008736e617073686f74000000000000000000000000000000000000000000000000000000"
    "0000000000000000000000000000000000000000000000000000000005302e312e34000000000000"
    "000000000000000000000000000000000000000000"
)
RECORDED_ROLE_CALL_DATA = (
    "0xc6fe8747000000000000000000000000a58cf66d0f14aefb2389c6998f6ad219dd4885c1000000"
    "00000000000000000000000000000000000000000000000000000000000000000000000000000000"
    "0000000000000000000000000000000000000000c000000000000000000000000000000000000000"
    "00000000000000000000000001617263000000000000000000000000000000000000000000000000"
    "00000000000000000000000000000000000000000000000000000000000000000000000001000000"
    "00000000000000000000000000000000000000000000000000000002e470d0f38400000000000000"
    "00000000000000000000000000000000000000000000000040000000000000000000000000000000"
    "00000000000000000000000000000002200000000000000000000000000eb5b03c0303f2f47cd81d"
    "7be4275af8ed34757600000000000000000000000000000000000000000000000000000000000001"
    "0000000000000000000000000000000000000000000000000000000000669cf0cfd096c5d610d445"
    "5bcae4bff719d18345939c5d6b20d56c6a1f37d0247ad10f71000000000000000000000000000000"
    "00000000000000000000000000000000020000000000000000000000000000000000000000000000"
    "00000000000000014000000000000000000000000000000000000000000000000000000000000001"
    "6000000000000000000000000000000000000000000000000000000000000001a000000000000000"
    "00000000000000000000000000000000000000000000000016617262697472756d666f756e646174"
    "696f6e2e657468000000000000000000000000000000000000000000000000000000000000000000"
    "00000000000000000000000000000000000000000000000000000000000000000000000000000000"
    "08736e617073686f7400000000000000000000000000000000000000000000000000000000000000"
    "000000000000000000000000000000000000000000000000027b7d00000000000000000000000000"
    "00000000000000000000000000000000000000000000000000000000000000000000000000000000"
    "00000000000000004000000000000000000000000000000000000000000000000000000000000000"
    "800000000000000000000000000000000000000000000000000000000000000008736e617073686f"
    "74000000000000000000000000000000000000000000000000000000000000000000000000000000"
    "0000000000000000000000000000000005302e312e34000000000000000000000000000000000000"
    "00000000000000000000000000000000000000000000000000000000000000000000000000"
)

RECORDED_INITIATOR = "0x83e3ca8ddebbd81c3bcdc3aa9e3afcd2bfb7c360"
RECORDED_ROLES = "0xd8c71be42ae496286b8b75929f9cec967ade7455"
RECORDED_AVATAR = "0x0eb5b03c0303f2f47cd81d7be4275af8ed347576"


def safe_properties(address=SAFE, **kwargs):
    return {f"eth:{address}": SafeTransactionProperties(**kwargs)}


def exec_via_owner(owner, transaction):
    """Calldata of a threshold-1 Safe executing ``transaction`` for its owner."""
    return encode_exec_transaction(
        SafeTransactionRequest.from_meta(transaction), pre_approved_signature(owner)
    )


class TestDirectExecution:
    """Routes that execute in a single transaction."""

    @pytest.mark.asyncio
    async def test_eoa_owns_safe_with_threshold_one(self):
        """Test that the owner executes the Safe transaction directly."""
        route = linear_route(eoa(), (safe(threshold=1), OWNS))

        plan = await plan_execution([TX], route, Options())

        assert len(plan) == 1
        (action,) = plan
        assert action.type is ExecutionActionType.EXECUTE_TRANSACTION
        assert action.chain == 1
        assert action.from_ == EOA
        assert action.transaction.to == SAFE
        assert action.transaction.value == 0
        assert action.transaction.data == exec_via_owner(EOA, TX)

    @pytest.mark.asyncio
    async def test_batches_multiple_transactions(self):
        """Test that several transactions are delivered as one multisend call."""
        other = MetaTransaction(to=SAFE_2, value=1)
        route = linear_route(eoa(), (safe(threshold=1), OWNS))

        (action,) = await plan_execution([TX, other], route, Options())

        batch = encode_multi_send_batch([TX, other])
        assert batch.to == MULTI_SEND_CALL_ONLY_141
        assert action.transaction.data == exec_via_owner(EOA, batch)

    @pytest.mark.asyncio
    async def test_safe_enabled_as_module(self):
        """Test that a Safe enabled as module calls execTransactionFromModule."""
        route = linear_route(safe(), (safe(SAFE_2, threshold=2), IS_ENABLED))

        (action,) = await plan_execution([TX], route, Options())

        assert action.from_ == SAFE
        assert action.transaction.to == SAFE_2
        assert action.transaction.data == encode_exec_transaction_from_module(TX)

    @pytest.mark.asyncio
    async def test_safe_rejects_membership_connection(self):
        """Test that a Safe reached through role membership is malformed."""
        route = linear_route(eoa(), (safe(), IS_MEMBER))

        with pytest.raises(InvalidConnection):
            await plan_execution([TX], route, Options())


class TestProposals:
    """Safes that need more than the route's own signature."""

    @pytest.mark.asyncio
    async def test_threshold_above_one_is_signed_and_proposed(self):
        """Test that the EOA signs the Safe transaction which is then proposed."""
        route = linear_route(eoa(), (safe(threshold=3), OWNS))
        options = Options(safe_transaction_properties=safe_properties(nonce=5))

        plan = await plan_execution([TX], route, options)

        assert [action.type for action in plan] == [
            ExecutionActionType.SIGN_TYPED_DATA,
            ExecutionActionType.PROPOSE_TRANSACTION,
        ]
        sign, propose = plan
        assert sign.from_ == EOA
        assert sign.typed_data["message"]["nonce"] == 5
        assert sign.typed_data["domain"]["verifyingContract"].lower() == SAFE
        assert propose.safe == SAFE
        assert propose.proposer is None
        assert propose.signature is None
        assert propose.safe_transaction == SafeTransactionRequest.from_meta(TX, nonce=5)

    @pytest.mark.asyncio
    async def test_enqueue_nonce_from_transaction_service(self):
        """Test that the default nonce strategy asks the transaction service."""
        service = MagicMock()
        service.get_next_nonce = AsyncMock(return_value=7)
        route = linear_route(eoa(), (safe(threshold=2), OWNS))

        plan = await plan_execution([TX], route, Options(safe_service=service))

        assert plan[-1].safe_transaction.nonce == 7
        service.get_next_nonce.assert_awaited_once_with(1, SAFE)

    @pytest.mark.asyncio
    async def test_override_nonce_reads_chain(self):
        """Test that the override strategy reads the Safe's on-chain nonce."""
        provider = mock_provider(eth_call="0x" + "0" * 63 + "9")
        route = linear_route(eoa(), (safe(threshold=2), OWNS))
        options = Options(
            providers={1: provider},
            safe_transaction_properties=safe_properties(nonce="override"),
        )

        plan = await plan_execution([TX], route, options)

        assert plan[-1].safe_transaction.nonce == 9
        provider.request.assert_awaited_once()
        assert provider.request.await_args.args[0] == "eth_call"

    @pytest.mark.asyncio
    async def test_propose_only_overrides_direct_execution(self):
        """Test that propose-only forces a proposal at a threshold-1 Safe."""
        route = linear_route(eoa(), (safe(threshold=1), OWNS))
        options = Options(safe_transaction_properties=safe_properties(propose_only=True, nonce=0))

        plan = await plan_execution([TX], route, options)

        assert plan[-1].type is ExecutionActionType.PROPOSE_TRANSACTION

    @pytest.mark.asyncio
    async def test_onchain_signature_approves_hash(self):
        """Test that the EOA approves the hash on-chain instead of signing."""
        route = linear_route(eoa(), (safe(threshold=2), OWNS))
        options = Options(
            safe_transaction_properties=safe_properties(onchain_signature=True, nonce=5)
        )

        approve, propose = await plan_execution([TX], route, options)

        digest = safe_transaction_hash(1, SAFE, propose.safe_transaction)
        assert approve.type is ExecutionActionType.EXECUTE_TRANSACTION
        assert approve.from_ == EOA
        assert approve.transaction == MetaTransaction(to=SAFE, data=encode_approve_hash(digest))
        assert propose.proposer == EOA
        assert propose.signature == pre_approved_signature(EOA)

    @pytest.mark.asyncio
    async def test_owner_safe_approves_downstream_hash(self):
        """Test that an owning Safe approves the downstream Safe transaction hash."""
        route = linear_route(eoa(), (safe(threshold=1), OWNS), (safe(SAFE_2, threshold=2), OWNS))
        options = Options(safe_transaction_properties=safe_properties(SAFE_2, nonce=3))

        execute, propose = await plan_execution([TX], route, options)

        assert propose.safe == SAFE_2
        assert propose.safe_transaction.nonce == 3
        assert propose.proposer == SAFE
        assert propose.signature == pre_approved_signature(SAFE)

        digest = safe_transaction_hash(1, SAFE_2, propose.safe_transaction)
        approve = MetaTransaction(to=SAFE_2, data=encode_approve_hash(digest))
        assert execute.from_ == EOA
        assert execute.transaction.to == SAFE
        assert execute.transaction.data == exec_via_owner(EOA, approve)


class TestRoles:
    """Routes through a Roles modifier."""

    @pytest.mark.asyncio
    async def test_recorded_plan(self):
        """Test a recorded plan from a Safe member through Roles v2 on arb1."""
        route = Route.from_dict(
            {
                "id": "recorded",
                "waypoints": [
                    {
                        "account": {
                            "type": "SAFE",
                            "address": RECORDED_INITIATOR,
                            "prefixedAddress": f"arb1:{RECORDED_INITIATOR}",
                            "chain": 42161,
                            "threshold": 3,
                        }
                    },
                    {
                        "account": {
                            "type": "ROLES",
                            "address": RECORDED_ROLES,
                            "prefixedAddress": f"arb1:{RECORDED_ROLES}",
                            "chain": 42161,
                            "version": 2,
                            "multisend": ["0xa238cbeb142c10ef7ad8442c6d1f9e89e07e7761"],
                        },
                        "connection": {
                            "type": "IS_MEMBER",
                            "from": f"arb1:{RECORDED_INITIATOR}",
                            "roles": ["0x" + "617263".ljust(64, "0")],
                        },
                    },
                    {
                        "account": {
                            "type": "SAFE",
                            "address": RECORDED_AVATAR,
                            "prefixedAddress": f"arb1:{RECORDED_AVATAR}",
                            "chain": 42161,
                            "threshold": 5,
                        },
                        "connection": {"type": "IS_ENABLED", "from": f"arb1:{RECORDED_ROLES}"},
                    },
                ],
            }
        )
        transaction = MetaTransaction(
            to="0xa58cf66d0f14aefb2389c6998f6ad219dd4885c1",
            data=RECORDED_TRANSACTION_DATA,
            operation=OperationType.DELEGATE_CALL,
        )

        plan = await plan_execution([transaction], route, Options())

        assert len(plan) == 1
        (action,) = plan
        assert action.type is ExecutionActionType.EXECUTE_TRANSACTION
        assert action.chain == 42161
        assert action.from_ == RECORDED_INITIATOR
        assert action.transaction.to == RECORDED_ROLES
        assert action.transaction.value == 0
        assert action.transaction.data == RECORDED_ROLE_CALL_DATA

    @pytest.mark.asyncio
    async def test_member_calls_roles_with_role(self):
        """Test that the member's role call decodes back to the transaction."""
        route = linear_route(eoa(), (roles(), IS_MEMBER), (safe(threshold=3), IS_ENABLED))

        (action,) = await plan_execution([TX], route, Options())

        assert action.from_ == EOA
        assert action.transaction.to == ROLES
        decoded = decode_role_call(action.transaction.data, 2)
        assert decoded["transaction"] == TX
        assert decoded["role"] == ROLE_KEY
        assert decoded["should_revert"] is True

    @pytest.mark.asyncio
    async def test_role_override(self):
        """Test that a caller-selected role wins over the candidates."""
        route = linear_route(eoa(), (roles(), IS_MEMBER), (safe(), IS_ENABLED))
        options = Options(roles={f"eth:{ROLES}": OTHER_ROLE_KEY})

        (action,) = await plan_execution([TX], route, options)

        assert decode_role_call(action.transaction.data, 2)["role"] == OTHER_ROLE_KEY

    @pytest.mark.asyncio
    async def test_connection_default_role(self):
        """Test that the membership's default role wins over the first candidate."""
        route = linear_route(
            eoa(),
            (roles(), IS_MEMBER, (ROLE_KEY, OTHER_ROLE_KEY), OTHER_ROLE_KEY),
            (safe(), IS_ENABLED),
        )

        (action,) = await plan_execution([TX], route, Options())

        assert decode_role_call(action.transaction.data, 2)["role"] == OTHER_ROLE_KEY

    @pytest.mark.asyncio
    async def test_owned_safe_as_member(self):
        """Test that a threshold-1 Safe member wraps the role call for its owner."""
        route = linear_route(
            eoa(), (safe(threshold=1), OWNS), (roles(), IS_MEMBER), (safe(SAFE_2), IS_ENABLED)
        )

        (action,) = await plan_execution([TX], route, Options())

        role_call = MetaTransaction(
            to=ROLES, data=encode_exec_transaction_with_role(TX, ROLE_KEY, 2)
        )
        assert action.from_ == EOA
        assert action.transaction.to == SAFE
        assert action.transaction.data == exec_via_owner(EOA, role_call)

    @pytest.mark.asyncio
    async def test_multisend_from_roles(self):
        """Test that batches prefer the multisend registered on the Roles modifier."""
        registered = "0x40a2accbd92bca938b02010e17a5b8929b49130d"
        other = MetaTransaction(to=SAFE_2, value=1)
        route = linear_route(
            eoa(), (roles(multisend=[registered]), IS_MEMBER), (safe(), IS_ENABLED)
        )

        (action,) = await plan_execution([TX, other], route, Options())

        decoded = decode_role_call(action.transaction.data, 2)
        assert decoded["transaction"].to == registered
        assert decoded["transaction"].operation is OperationType.DELEGATE_CALL

    @pytest.mark.asyncio
    async def test_invalid_upstream_connection(self):
        """Test that Roles must be reached through membership."""
        route = linear_route(eoa(), (roles(), IS_ENABLED), (safe(), IS_ENABLED))

        with pytest.raises(InvalidUpstreamConnection):
            await plan_execution([TX], route, Options())

    @pytest.mark.asyncio
    async def test_invalid_downstream_connection(self):
        """Test that Roles must forward to a Safe or Delay it is enabled on."""
        route = linear_route(eoa(), (roles(), IS_MEMBER), (safe(), OWNS))

        with pytest.raises(InvalidDownstreamConnection):
            await plan_execution([TX], route, Options())

    @pytest.mark.asyncio
    async def test_roles_as_avatar(self):
        """Test that a route cannot end at a Roles modifier."""
        route = linear_route(eoa(), (roles(), IS_MEMBER))

        with pytest.raises(InvalidDownstreamConnection):
            await plan_execution([TX], route, Options())

    @pytest.mark.asyncio
    async def test_module_member_uses_default_role(self):
        """Test that a module calling into Roles goes through its module entry point."""
        route = linear_route(
            safe(),
            (delay(), IS_ENABLED),
            (roles(default_role={DELAY: ROLE_KEY}), IS_MEMBER),
            (safe(SAFE_2), IS_ENABLED),
        )

        queue, release = await plan_execution([TX], route, Options())

        # Modifiers forward the inner call unchanged.
        assert queue.from_ == SAFE
        assert queue.transaction.to == DELAY
        assert queue.transaction.data == encode_exec_transaction_from_module(TX)
        assert release.transaction.data == encode_execute_next_tx(TX)


class TestDelay:
    """Routes through a Delay modifier."""

    @pytest.mark.asyncio
    async def test_queue_then_release(self):
        """Test that a Delay hop produces a queue and a release transaction."""
        route = linear_route(safe(), (delay(), IS_ENABLED), (safe(SAFE_2), IS_ENABLED))

        plan = await plan_execution([TX], route, Options())

        assert len(plan) == 2
        queue, release = plan
        for action in plan:
            assert action.type is ExecutionActionType.EXECUTE_TRANSACTION
            assert action.from_ == SAFE
            assert action.transaction.to == DELAY
        assert queue.transaction.data == encode_exec_transaction_from_module(TX)
        assert release.transaction.data == encode_execute_next_tx(TX)

    @pytest.mark.asyncio
    async def test_delay_cannot_initiate(self):
        """Test that a Delay modifier cannot start a route."""
        route = make_route(linear_waypoints(delay(), (safe(), IS_ENABLED)))

        with pytest.raises(MalformedRoute):
            await plan_execution([TX], route, Options())


class TestNormalizationBeforePlanning:
    """Planning fills missing Safe thresholds from chain."""

    @pytest.mark.asyncio
    async def test_missing_threshold_is_fetched(self):
        """Test that a Safe without threshold is read once from chain."""
        provider = mock_provider(eth_call="0x" + "0" * 63 + "1")
        route = linear_route(eoa(), (safe(threshold=None), OWNS))

        plan = await plan_execution([TX], route, Options(providers={1: provider}))

        assert [action.type for action in plan] == [ExecutionActionType.EXECUTE_TRANSACTION]
        provider.request.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_input_route_is_not_modified(self):
        """Test that planning returns fresh data and keeps the route intact."""
        provider = mock_provider(eth_call="0x" + "0" * 63 + "1")
        route = linear_route(eoa(), (safe(threshold=None), OWNS))

        await plan_execution([TX], route, Options(providers={1: provider}))

        assert route.waypoints[1].account.threshold is None

    @pytest.mark.asyncio
    async def test_starting_point_must_lead(self):
        """Test that a route starting with a connected waypoint is malformed."""
        start, hop = linear_waypoints(eoa(), (safe(), OWNS))
        route = Route(id="x", waypoints=(hop, hop))

        with pytest.raises(MalformedRoute):
            await plan_execution([TX], route, Options())

    def test_starting_point_has_no_connection(self):
        """Test the starting point shape."""
        assert StartingPoint(account=eoa()).connection is None
        assert isinstance(linear_waypoints(eoa(), (safe(), OWNS))[1], Waypoint)
