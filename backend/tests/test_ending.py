import pytest

from pyramid.services.rooms.errors import InvalidArgument, NotFound, Unauthorized


def _statuses(gateway, room_id):
    return {p['user_id']: p['status'] for p in gateway.get_snapshot(room_id, 'alice')['players']}


def _ending_rows(gateway, room_id):
    return [p for p in gateway.get_snapshot(room_id, 'alice')['progress'] if p['puzzle_key'] == 'maat']


def test_coop_with_absent_partner_completes(gateway, room):
    gateway.grant_artifact(room, 'alice', 'shabti')
    sleeps = []
    gateway.ritual_interval = 0.01
    gateway.sleep = sleeps.append

    result = gateway.perform_final(room, 'alice', 'cooperate')

    assert result == {'ending': 'coop', 'message': 'Balance achieved. Both of you walk free.'}
    # Budget of three polls, two waits between them
    assert sleeps == [0.01, 0.01]
    assert _statuses(gateway, room) == {'alice': 'escaped', 'bob': 'escaped'}
    snapshot = gateway.get_snapshot(room, 'bob')
    assert snapshot['room']['status'] == 'ended'
    assert snapshot['room']['phase'] == 'ended'


def test_coop_both_ready(gateway, room):
    gateway.grant_artifact(room, 'bob', 'shabti')
    gateway.ritual_interval = 0.01

    def partner_arrives(seconds):
        gateway.mark_ready(room, 'bob', 'maat_ritual')

    gateway.sleep = partner_arrives
    result = gateway.perform_final(room, 'alice', 'cooperate')
    assert result['ending'] == 'coop'
    assert gateway.get_barrier_status(room, 'alice', 'maat_ritual') == {'ready': 2, 'total': 2, 'allReady': True}
    # Partner's own call finds the ending already recorded
    assert gateway.perform_final(room, 'bob', 'cooperate') == {'ending': 'coop', 'message': 'ending already recorded'}


def test_single_player_coop(gateway):
    room_id = gateway.create_room('solo-sam')['room']['id']
    gateway.grant_artifact(room_id, 'solo-sam', 'shabti')
    assert gateway.perform_final(room_id, 'solo-sam', 'cooperate') == {'ending': 'coop', 'message': 'You walk free.'}


def test_coop_then_solo_records_one_ending(gateway, room):
    gateway.grant_artifact(room, 'alice', 'shabti')
    gateway.grant_artifact(room, 'bob', 'counterweight_stones')
    coop = gateway.perform_final(room, 'alice', 'cooperate')
    solo = gateway.perform_final(room, 'bob', 'solo')
    assert coop['ending'] == 'coop'
    assert solo == {'ending': 'coop', 'message': 'ending already recorded'}
    assert len(_ending_rows(gateway, room)) == 1
    assert _statuses(gateway, room) == {'alice': 'escaped', 'bob': 'escaped'}


def test_solo_then_coop_records_one_ending(gateway, room):
    gateway.grant_artifact(room, 'alice', 'shabti')
    gateway.grant_artifact(room, 'bob', 'bronze_khopesh')
    solo = gateway.perform_final(room, 'bob', 'solo')
    assert solo == {'ending': 'solo', 'message': 'You escape alone using bronze_khopesh.'}
    coop = gateway.perform_final(room, 'alice', 'cooperate')
    assert coop == {'ending': 'solo', 'message': 'ending already recorded'}
    rows = _ending_rows(gateway, room)
    assert len(rows) == 1
    assert rows[0]['payload'] == {'ending': 'solo', 'used': 'bronze_khopesh'}
    assert _statuses(gateway, room) == {'alice': 'down', 'bob': 'escaped'}
    assert gateway.get_snapshot(room, 'alice')['room']['status'] == 'ended'


def test_solo_lands_while_coop_waits(gateway, room):
    gateway.grant_artifact(room, 'alice', 'shabti')
    gateway.grant_artifact(room, 'bob', 'counterweight_stones')
    gateway.ritual_interval = 0.01
    seen = []

    def partner_betrays(seconds):
        if not seen:
            seen.append(gateway.perform_final(room, 'bob', 'solo'))

    gateway.sleep = partner_betrays
    result = gateway.perform_final(room, 'alice', 'cooperate')

    assert seen == [{'ending': 'solo', 'message': 'You escape alone using counterweight_stones.'}]
    assert result == {'ending': 'solo', 'message': 'ending already recorded'}
    assert _statuses(gateway, room) == {'alice': 'down', 'bob': 'escaped'}
    assert len(_ending_rows(gateway, room)) == 1


def test_solo_item_choice(gateway, room):
    gateway.grant_artifact(room, 'bob', 'counterweight_stones')
    gateway.grant_artifact(room, 'bob', 'bronze_khopesh')
    result = gateway.perform_final(room, 'bob', 'solo', item='bronze_khopesh')
    assert result['message'] == 'You escape alone using bronze_khopesh.'


def test_prerequisites(gateway, room):
    with pytest.raises(InvalidArgument):
        gateway.perform_final(room, 'alice', 'cooperate')
    with pytest.raises(InvalidArgument):
        gateway.perform_final(room, 'alice', 'solo')
    gateway.grant_artifact(room, 'alice', 'counterweight_stones')
    with pytest.raises(InvalidArgument):
        gateway.perform_final(room, 'alice', 'solo', item='bronze_khopesh')
    with pytest.raises(InvalidArgument):
        gateway.perform_final(room, 'alice', 'solo', item='shabti')
    with pytest.raises(InvalidArgument):
        gateway.perform_final(room, 'alice', 'surrender')
    assert _ending_rows(gateway, room) == []
    assert gateway.get_snapshot(room, 'alice')['room']['status'] == 'waiting'


def test_final_access_errors(gateway, room):
    with pytest.raises(Unauthorized):
        gateway.perform_final(room, 'mallory', 'cooperate')
    with pytest.raises(Unauthorized):
        gateway.perform_final(room, None, 'cooperate')
    with pytest.raises(NotFound):
        gateway.perform_final('missing', 'alice', 'cooperate')
