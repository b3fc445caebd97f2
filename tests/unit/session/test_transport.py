"""Tests for the boto3-backed remote transport."""

from unittest.mock import Mock, call, patch

import boto3
import pytest

from src.bulkman.session.transport import Boto3Transport, RemoteSession

SESSION_PATH = "src.bulkman.session.transport.boto3.Session"


def make_boto_session(clients, region_name="eu-west-1"):
    """Build a boto3 session stand-in whose client() returns the named mocks."""
    session = Mock(spec=boto3.Session)
    session.region_name = region_name
    session.client.side_effect = lambda service: clients[service]
    return session


class TestBoto3TransportOpen:
    """Test cases for opening sessions."""

    def setup_method(self):
        """Set up STS and service client mocks."""
        self.sts = Mock()
        self.sts.get_caller_identity.return_value = {
            "Account": "123456789012",
            "Arn": "arn:aws:iam::123456789012:user/alice",
            "ResponseMetadata": {"RequestId": "req-1"},
        }
        self.identitystore = Mock()
        self.clients = {"sts": self.sts, "identitystore": self.identitystore}

    @pytest.mark.asyncio
    async def test_open_with_profile_credentials(self):
        """Test opening a session signed with profile credentials."""
        boto_session = make_boto_session(self.clients)
        transport = Boto3Transport(profile="school", region="eu-west-1")

        with patch(SESSION_PATH, return_value=boto_session) as session_class:
            session = await transport.open_session("token-abc", ["identitystore"])

        session_class.assert_called_once_with(profile_name="school", region_name="eu-west-1")
        assert session.session_id == "boto3-1"
        assert session.scopes == ["identitystore"]
        assert session.backend is boto_session
        assert session.clients == {"identitystore": self.identitystore}
        assert session.identity == {
            "Account": "123456789012",
            "Arn": "arn:aws:iam::123456789012:user/alice",
        }
        self.sts.assume_role_with_web_identity.assert_not_called()

    @pytest.mark.asyncio
    async def test_open_without_identity_check(self):
        """Test that the caller identity lookup can be skipped."""
        boto_session = make_boto_session(self.clients)
        transport = Boto3Transport(validate_identity=False)

        with patch(SESSION_PATH, return_value=boto_session) as session_class:
            first = await transport.open_session("token-abc", [])
            second = await transport.open_session("token-abc", [])

        session_class.assert_called_with()
        assert first.identity == {}
        assert (first.session_id, second.session_id) == ("boto3-1", "boto3-2")
        self.sts.get_caller_identity.assert_not_called()

    @pytest.mark.asyncio
    async def test_open_exchanges_token_for_role_credentials(self):
        """Test that the credential token is exchanged with AssumeRoleWithWebIdentity."""
        base_sts = Mock()
        base_sts.assume_role_with_web_identity.return_value = {
            "Credentials": {
                "AccessKeyId": "AKIA-TEMP",
                "SecretAccessKey": "secret",
                "SessionToken": "session-token",
            }
        }
        base_session = make_boto_session({"sts": base_sts}, region_name="eu-north-1")
        assumed_session = make_boto_session(self.clients, region_name="eu-north-1")
        transport = Boto3Transport(role_arn="arn:aws:iam::123456789012:role/bulk", role_session_name="nightly")

        with patch(SESSION_PATH, side_effect=[base_session, assumed_session]) as session_class:
            session = await transport.open_session("token-abc", ["identitystore"])

        base_sts.assume_role_with_web_identity.assert_called_once_with(
            RoleArn="arn:aws:iam::123456789012:role/bulk",
            RoleSessionName="nightly",
            WebIdentityToken="token-abc",
        )
        assert session_class.call_args_list == [
            call(),
            call(
                aws_access_key_id="AKIA-TEMP",
                aws_secret_access_key="secret",
                aws_session_token="session-token",
                region_name="eu-north-1",
            ),
        ]
        assert session.backend is assumed_session
        assert session.identity["Account"] == "123456789012"
        base_sts.get_caller_identity.assert_not_called()


class TestBoto3TransportInvoke:
    """Test cases for routing commands to boto3 clients."""

    def setup_method(self):
        """Set up an open session with one scoped client."""
        self.identitystore = Mock()
        self.sso_admin = Mock()
        self.backend = make_boto_session({"sso-admin": self.sso_admin})
        self.session = RemoteSession(
            session_id="boto3-1",
            scopes=["identitystore"],
            opened_at=0.0,
            backend=self.backend,
            clients={"identitystore": self.identitystore},
        )
        self.transport = Boto3Transport()

    @pytest.mark.asyncio
    async def test_service_qualified_command(self):
        """Test that "<service>:<operation>" runs on that service's client."""
        self.identitystore.create_user.return_value = {
            "UserId": "u-1",
            "ResponseMetadata": {"HTTPStatusCode": 200},
        }

        result = await self.transport.invoke(
            self.session, "identitystore:create_user", {"IdentityStoreId": "d-1", "UserName": "ada"}
        )

        assert result == {"UserId": "u-1"}
        self.identitystore.create_user.assert_called_once_with(IdentityStoreId="d-1", UserName="ada")

    @pytest.mark.asyncio
    async def test_bare_command_runs_on_first_scope(self):
        """Test that an unqualified operation name uses the first scope."""
        self.identitystore.list_users.return_value = {"Users": []}

        result = await self.transport.invoke(self.session, "list_users", {"IdentityStoreId": "d-1"})

        assert result == {"Users": []}
        self.identitystore.list_users.assert_called_once_with(IdentityStoreId="d-1")
        self.backend.client.assert_not_called()

    @pytest.mark.asyncio
    async def test_bare_command_without_scopes(self):
        """Test that an unqualified command needs at least one scope."""
        self.session.scopes = []

        with pytest.raises(ValueError, match="does not name a service"):
            await self.transport.invoke(self.session, "list_users", {})

    @pytest.mark.asyncio
    async def test_client_created_lazily_and_reused(self):
        """Test that clients for services outside the scopes are created once on demand."""
        self.sso_admin.list_instances.return_value = ["not-a-dict"]

        first = await self.transport.invoke(self.session, "sso-admin:list_instances", {})
        await self.transport.invoke(self.session, "sso-admin:list_instances", {})

        assert first == ["not-a-dict"]
        self.backend.client.assert_called_once_with("sso-admin")
        assert self.session.clients["sso-admin"] is self.sso_admin
        assert self.sso_admin.list_instances.call_count == 2

    @pytest.mark.asyncio
    async def test_closed_session_is_refused(self):
        """Test that commands on a closed session raise before reaching a client."""
        await self.transport.close_session(self.session)

        with pytest.raises(RuntimeError, match="Session boto3-1 is closed"):
            await self.transport.invoke(self.session, "identitystore:list_users", {})

        self.identitystore.list_users.assert_not_called()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        """Test closing a session twice."""
        await self.transport.close_session(self.session)
        await self.transport.close_session(self.session)

        assert self.session.closed
        assert self.session.clients == {}
        assert not self.transport.is_alive(self.session)
        assert not self.transport.is_alive(None)
