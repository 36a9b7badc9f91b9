# tests/test_rcon_handler.py

from dataclasses import replace

import pytest

from app.errors import ConfigurationError, ResolutionError, TransportError, ValidationError
from app.infrastructure.rcon_handler import RconClient, SESSION_TIME_UNAVAILABLE, parse_players
from conftest import (
    OTHER_STEAM_ID,
    PLAYERS_RESPONSE,
    STEAM_ID,
    FakeTransport,
    failing_factory,
    transport_factory,
    usable_settings,
)


# Spieler im Verbindungsaufbau: noch keine GUID
CONNECTING_LINE = "5   10.0.0.7:2304      0    -  Charlie"


def _commands():
    return [c for t in FakeTransport.instances for c in t.commands]


def test_is_usable_with_complete_settings(rcon):
    assert rcon.is_usable()


@pytest.mark.parametrize(
    "change",
    [{"enabled": False}, {"host": ""}, {"password": ""}, {"port": 0}],
)
def test_is_usable_false_when_one_field_missing(change):
    client = RconClient(replace(usable_settings(), **change), transport_factory=transport_factory())
    assert not client.is_usable()


def test_missing_library_disables_client_without_network():
    client = RconClient(usable_settings(), transport_factory=None)

    assert not client.library_available
    assert not client.is_usable()
    with pytest.raises(ConfigurationError):
        client.list_players()
    assert FakeTransport.instances == []


def test_unconfigured_client_fails_before_connecting():
    client = RconClient(replace(usable_settings(), enabled=False), transport_factory=transport_factory())

    with pytest.raises(ConfigurationError, match="not enabled"):
        client.kick_player(STEAM_ID)
    assert FakeTransport.instances == []


def test_parse_players_skips_header_and_footer_lines():
    players = parse_players(PLAYERS_RESPONSE)

    assert [p.slot for p in players] == [0, 3]
    assert players[0].guid == STEAM_ID
    assert players[0].ip == "10.0.0.5:2304"
    assert players[0].ping == 31
    assert players[1].name == "Bravo Two"
    assert players[1].lobby is True


def test_parse_players_keeps_connecting_player_without_guid():
    raw = PLAYERS_RESPONSE.replace("(2 players in total)", CONNECTING_LINE + "\n(3 players in total)")
    players = parse_players(raw)

    assert [p.slot for p in players] == [0, 3, 5]
    assert players[2].guid == ""
    assert players[2].name == "Charlie"


def test_ban_of_connecting_player_without_guid_fails(debug_log):
    raw = CONNECTING_LINE + "\n(1 players in total)"
    client = RconClient(usable_settings(), transport_factory=transport_factory(players=raw), debug_log=debug_log)

    assert client.test_connection()["player_count"] == 1
    with pytest.raises(ResolutionError):
        client.ban_player("Charlie")


def test_list_players_always_reports_session_time_unavailable(rcon):
    players = rcon.list_players()

    assert len(players) == 2
    assert all(p.session_time == SESSION_TIME_UNAVAILABLE for p in players)
    assert all(p.to_dict()["time"] == "N/A" for p in players)


def test_kick_by_steam_id_resolves_slot_and_uses_default_reason(rcon):
    slot = rcon.kick_player(STEAM_ID, "")

    assert slot == 0
    assert _commands() == ["players", "kick 0 Kicked by admin"]


def test_kick_unknown_steam_id_fails_before_kick_command(rcon):
    with pytest.raises(ResolutionError):
        rcon.kick_player("76561198999999999", "bye")

    assert _commands() == ["players"]
    # Auflösungsfehler behalten die Verbindung
    assert rcon.connected


def test_kick_by_slot_number_skips_player_lookup(rcon):
    rcon.kick_player("3", "afk")
    assert _commands() == ["kick 3 afk"]


def test_kick_by_name_is_case_insensitive(rcon):
    rcon.kick_player("bravo", "afk")
    assert _commands() == ["players", "kick 3 afk"]


def test_ban_with_steam_id_uses_guid_directly(rcon):
    guid = rcon.ban_player(STEAM_ID)

    assert guid == STEAM_ID
    assert _commands() == [f"addBan {STEAM_ID} 0 Banned by admin"]


def test_ban_by_name_resolves_guid_and_passes_duration(rcon):
    rcon.ban_player("Bravo", "griefing", duration_minutes=90)
    assert _commands() == ["players", f"addBan {OTHER_STEAM_ID} 90 griefing"]


def test_ban_rejects_negative_duration(rcon):
    with pytest.raises(ValidationError):
        rcon.ban_player(STEAM_ID, duration_minutes=-5)
    assert FakeTransport.instances == []


def test_unban_broadcast_and_raw_command(rcon):
    rcon.unban_player(STEAM_ID)
    rcon.send_global_message("Restart in 5 minutes")
    response = rcon.execute_raw_command("players")

    assert response == PLAYERS_RESPONSE
    assert _commands() == [f"removeBan {STEAM_ID}", "say -1 Restart in 5 minutes", "players"]


def test_empty_message_is_rejected(rcon):
    with pytest.raises(ValidationError):
        rcon.send_global_message("   ")


def test_connection_is_reused_between_commands(rcon):
    rcon.list_players()
    rcon.list_players()
    assert len(FakeTransport.instances) == 1


def test_transport_failure_discards_connection(debug_log):
    client = RconClient(usable_settings(), transport_factory=transport_factory(fail_on={"kick"}), debug_log=debug_log)

    with pytest.raises(TransportError, match="Failed to kick player"):
        client.kick_player("0")

    assert not client.connected
    assert FakeTransport.instances[0].closed

    client.list_players()
    assert len(FakeTransport.instances) == 2


def test_connection_failure_is_reported_by_test_connection(debug_log):
    client = RconClient(usable_settings(), transport_factory=failing_factory, debug_log=debug_log)

    with pytest.raises(TransportError, match="Failed to connect"):
        client.list_players()

    result = client.test_connection()
    assert result["reachable"] is False
    assert "connection refused" in result["message"]


def test_test_connection_counts_players(rcon):
    result = rcon.test_connection()
    assert result == {
        "reachable": True,
        "message": "Connected successfully to RCON server",
        "player_count": 2,
    }


def test_timeout_is_passed_to_transport(debug_log):
    client = RconClient(usable_settings(), transport_factory=transport_factory(), timeout=2.5)
    client.list_players()
    assert FakeTransport.instances[0].timeout == 2.5


def test_debug_log_mirrors_traffic_without_password(rcon, debug_log):
    rcon.kick_player(STEAM_ID, "bye")

    content = debug_log.read_all()
    assert "Connecting to RCON server" in content
    assert "kick 0 bye" in content
    assert "secret" not in content
