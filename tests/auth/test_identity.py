from publicauth.primitives.identity import (
    decode_client_info,
    decode_id_token_claims,
    home_account_id_from,
    username_from,
)


class TestIdentityClaims:
    def test_id_token_claims_decoded_without_signature_check(self, id_token_factory):
        # Arrange
        id_token = id_token_factory(sub="subject", tid="tenant-a", upn="a@contoso.com")

        # Act
        claims = decode_id_token_claims(id_token)

        # Assert
        assert claims["tid"] == "tenant-a"
        assert username_from(claims) == "a@contoso.com"

    def test_malformed_id_token_yields_no_claims(self):
        assert decode_id_token_claims("not.a.jwt") == {}
        assert decode_id_token_claims(None) == {}

    def test_client_info_decoded_from_unpadded_base64url(self, client_info_factory):
        info = decode_client_info(client_info_factory("uid-1", "utid-1"))

        assert info == {"uid": "uid-1", "utid": "utid-1"}

    def test_malformed_client_info_yields_nothing(self):
        assert decode_client_info("%%%") == {}
        assert decode_client_info("WzEsMl0") == {}  # a JSON list

    def test_home_account_id_prefers_client_info(self):
        assert (
            home_account_id_from({"uid": "u", "utid": "t"}, {"sub": "s"}) == "u.t"
        )
        assert home_account_id_from({}, {"sub": "s"}) == "s"
        assert home_account_id_from({}, {}) is None

    def test_preferred_username_wins_over_upn(self):
        claims = {"preferred_username": "alice@contoso.com", "upn": "a@contoso.com"}

        assert username_from(claims) == "alice@contoso.com"
        assert username_from({}) == ""
