import pytest

from setup_core.errors import MalformedDocument
from setup_core.merge_utils import (
    extract_schedule_hour,
    find_anchor,
    find_blocks,
    has_block,
    merge,
)
from setup_core.config_utils import render_watchtower_block


BASE = """version: '3.8'

services:
  n8n:
    image: n8nio/n8n
    container_name: n8n
    restart: always
    volumes:
      - n8n_data:/home/node/.n8n

volumes:
  n8n_data:
"""

OLD_BLOCK = """  watchtower:
    image: containrrr/watchtower
    command: n8n"""


def block(hour=2, tz='Europe/Berlin', container='n8n'):
    return render_watchtower_block(hour, tz, container)


def top_level_keys(lines, depth=0):
    keys = []
    for line in lines:
        stripped = line.lstrip(' ')
        if stripped and not stripped.startswith(('#', '-')) and len(line) - len(stripped) == depth and ':' in stripped:
            keys.append(stripped.split(':', 1)[0])
    return keys


def test_insert_before_volumes_leaves_rest_untouched():
    base = BASE.splitlines()
    anchor = base.index('volumes:')
    b = block().splitlines()

    out = merge(base, 'watchtower', block())

    assert out[:anchor] == base[:anchor]
    assert out[anchor] == ''
    assert out[anchor + 1:anchor + 1 + len(b)] == b
    assert out[anchor + 1 + len(b)] == ''
    assert out[anchor + 2 + len(b):] == base[anchor:]


def test_merge_is_idempotent():
    once = merge(BASE, 'watchtower', block())
    twice = merge(once, 'watchtower', block())
    assert twice == once


def test_merge_is_idempotent_when_appending():
    doc = "services:\n  n8n:\n    image: n8nio/n8n\n\n\n"
    once = merge(doc, 'watchtower', block(), 'volumes')
    assert merge(once, 'watchtower', block(), 'volumes') == once


def test_rerun_with_new_schedule_replaces_old_block():
    with_old = merge(BASE, 'watchtower', OLD_BLOCK).splitlines()
    new_block = block(hour=4)

    out = merge(with_old, 'watchtower', new_block)

    assert len(out) - len(with_old) == len(new_block.splitlines()) - 3
    assert out.index('  watchtower:') == with_old.index('  watchtower:')
    start = out.index('  watchtower:')
    assert out[start:start + len(new_block.splitlines())] == new_block.splitlines()
    assert out.count('  watchtower:') == 1
    assert '      - WATCHTOWER_SCHEDULE=0 0 4 * * *' in out


def test_append_when_anchor_missing():
    doc = "services:\n  n8n:\n    image: n8nio/n8n\n\n\n"
    b = block().splitlines()

    out = merge(doc, 'watchtower', block(), 'volumes').splitlines()

    assert out[:3] == ['services:', '  n8n:', '    image: n8nio/n8n']
    assert out[3] == ''
    assert out[4:] == b


def test_append_when_no_anchor_given():
    out = merge(BASE, 'watchtower', block(), None).splitlines()
    assert out[-len(block().splitlines()):] == block().splitlines()
    assert out[-len(block().splitlines()) - 1] == ''


def test_removal_stops_at_adjacent_service():
    doc = [
        'services:',
        '  watchtower:',
        '    image: containrrr/watchtower',
        '  n8n:',
        '    image: n8nio/n8n',
        'volumes:',
        '  n8n_data:',
    ]
    out = merge(doc, 'watchtower', block())

    assert '  n8n:' in out
    assert '    image: n8nio/n8n' in out
    assert out.index('  n8n:') < out.index('  watchtower:') < out.index('volumes:')


def test_removal_stops_at_adjacent_top_level_key():
    doc = "a:\n  x: 1\nwatchtower:\n  image: old\n  restart: no\nb:\n  y: 2\n"
    new = "watchtower:\n  image: new"

    out = merge(doc, 'watchtower', new, None).splitlines()

    assert out == ['a:', '  x: 1', 'b:', '  y: 2', '', 'watchtower:', '  image: new']


def test_contiguous_duplicates_collapse_to_one():
    doc = [
        'services:',
        '  n8n:',
        '    image: n8nio/n8n',
        '  watchtower:',
        '    image: a',
        '  watchtower:',
        '    image: b',
        'volumes:',
        '  n8n_data:',
    ]
    out = merge(doc, 'watchtower', block())

    assert out.count('  watchtower:') == 1
    assert '    image: a' not in out
    assert '    image: b' not in out


def test_order_of_other_keys_preserved():
    doc = BASE.replace('services:\n', 'services:\n  postgres:\n    image: postgres:16\n')
    doc = doc.replace('\nvolumes:', '  traefik:\n    image: traefik\n\nvolumes:')
    before = [k for k in top_level_keys(doc.splitlines(), 2) if k != 'watchtower']

    out = merge(doc, 'watchtower', block()).splitlines()

    after = [k for k in top_level_keys(out, 2) if k != 'watchtower']
    assert after == before
    assert top_level_keys(out, 0) == top_level_keys(doc.splitlines(), 0)


def test_last_anchor_occurrence_wins():
    doc = ['services:', '  n8n:', '    image: n8nio/n8n', 'volumes:', '  a:', 'networks:', '  b:', 'volumes:', '  c:']
    out = merge(doc, 'watchtower', block())
    assert out.index('  watchtower:') > out.index('networks:')
    assert out[out.index('  watchtower:') + len(block().splitlines())] == ''
    assert out[-2:] == ['volumes:', '  c:']


def test_nested_volumes_is_not_an_anchor():
    assert find_anchor(BASE.splitlines(), 'volumes') == BASE.splitlines().index('volumes:')
    assert find_anchor(['services:', '  app:', '    volumes:'], 'volumes') is None


def test_comment_inside_block_is_dropped_and_outside_kept():
    doc = [
        '# managed by hand',
        'services:',
        '  watchtower:',
        '    # old settings',
        '    image: old',
        '  n8n:',
        '    image: n8nio/n8n',
    ]
    out = merge(doc, 'watchtower', block(), None)
    assert out[0] == '# managed by hand'
    assert '    # old settings' not in out


def test_string_in_string_out():
    out = merge(BASE, 'watchtower', block())
    assert isinstance(out, str)
    assert out.endswith('\n')


def test_tab_indentation_is_malformed():
    with pytest.raises(MalformedDocument):
        merge("services:\n\tn8n:\n\t\timage: n8nio/n8n\n", 'watchtower', block())


def test_tab_in_block_is_malformed():
    with pytest.raises(MalformedDocument):
        merge(BASE, 'watchtower', "  watchtower:\n\timage: x")


def test_block_must_start_with_service_key():
    with pytest.raises(ValueError):
        merge(BASE, 'watchtower', "  other:\n    image: x")
    with pytest.raises(ValueError):
        merge(BASE, '', block())


def test_find_blocks_and_schedule_hour():
    doc = merge(BASE, 'watchtower', block(hour=5))
    lines = doc.splitlines()
    (start, end), = find_blocks(doc, 'watchtower')
    assert lines[start] == '  watchtower:'
    assert lines[end - 1] == '    command: n8n'
    assert has_block(doc, 'watchtower')
    assert not has_block(BASE, 'watchtower')
    assert extract_schedule_hour(doc) == 5
    assert extract_schedule_hour(BASE) is None


NETWORKED = BASE + """
networks:
  watchtower:
    driver: bridge
"""


def test_same_name_under_other_parent_survives():
    out = merge(NETWORKED, 'watchtower', block()).splitlines()

    net = out.index('networks:')
    assert out[net + 1:net + 3] == ['  watchtower:', '    driver: bridge']
    assert out.count('  watchtower:') == 2
    assert out.index('  watchtower:') < out.index('volumes:') < net
    assert merge('\n'.join(out) + '\n', 'watchtower', block()) == '\n'.join(out) + '\n'


def test_block_detection_ignores_other_parents():
    assert not has_block(NETWORKED, 'watchtower')
    assert find_blocks(NETWORKED, 'watchtower', parent_key=None)
    doc = merge(NETWORKED, 'watchtower', block(hour=6))
    (start, _), = find_blocks(doc, 'watchtower')
    assert start < doc.splitlines().index('networks:')
    assert extract_schedule_hour(doc) == 6
