import sys, pathlib
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

import pytest
import requests

from datasources.gw2api import GW2APIError, GW2Client
from services.http_cache import TTLCache


class DummyResp:
    def __init__(self, status, data=None, text="", headers=None):
        self.status_code = status
        self._data = data if data is not None else []
        self.text = text
        self.headers = headers or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")

    def json(self):
        if isinstance(self._data, Exception):
            raise self._data
        return self._data


class FakeSession:
    def __init__(self, responder):
        self.responder = responder
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        return self.responder(url, params or {})


class CountingBucket:
    def __init__(self):
        self.acquired = 0

    def acquire(self, n=1, timeout=None):
        self.acquired += n
        return True


def make_client(responder, **api):
    session = FakeSession(responder)
    bucket = CountingBucket()
    config = {'api': dict({'base_url': 'https://api.example.test/v2', 'ids_per_request': 200}, **api)}
    return GW2Client(config, session=session, bucket=bucket, cache=TTLCache()), session, bucket


def echo_ids(url, params):
    return DummyResp(200, [{'id': int(i)} for i in params['ids'].split(',')])


def test_ids_are_chunked():
    client, session, bucket = make_client(echo_ids)
    records = client.get_items(range(450))

    assert len(records) == 450
    assert len(session.calls) == 3
    assert [len(p['ids'].split(',')) for _, p in session.calls] == [200, 200, 50]
    assert all(p['lang'] == 'en' for _, p in session.calls)
    assert session.calls[0][0] == 'https://api.example.test/v2/items'
    assert bucket.acquired == 3


def test_all_invalid_ids_yield_empty_page():
    client, _, _ = make_client(
        lambda url, params: DummyResp(404, {'text': 'all ids provided are invalid'},
                                      text='{"text": "all ids provided are invalid"}'))
    assert client.get_prices([1, 2, 3]) == []


def test_http_error_raises():
    client, _, _ = make_client(lambda url, params: DummyResp(503, text='unavailable'))
    with pytest.raises(GW2APIError):
        client.get_items([1])


def test_bad_json_raises():
    client, _, _ = make_client(lambda url, params: DummyResp(200, ValueError("not json")))
    with pytest.raises(GW2APIError):
        client.get_recipe_ids()


def test_connection_error_raises():
    def boom(url, params):
        raise requests.exceptions.ConnectionError("down")

    client, _, _ = make_client(boom)
    with pytest.raises(GW2APIError):
        client.get_listings([1])


def test_listings_served_from_cache():
    client, session, _ = make_client(echo_ids)
    first = client.get_listings([1, 2])
    second = client.get_listings([2, 1, 3])

    assert [r['id'] for r in first] == [1, 2]
    assert [r['id'] for r in second] == [2, 1, 3]
    assert [p['ids'] for _, p in session.calls] == ['1,2', '3']


def test_recipes_fetched_across_pages():
    def pages(url, params):
        page = params['page']
        return DummyResp(200, [{'id': page * 10 + i} for i in range(2)], headers={'X-Page-Total': '3'})

    client, session, _ = make_client(pages, ids_per_request=2)
    recipes = client.get_recipes()

    assert [r['id'] for r in recipes] == [0, 1, 10, 11, 20, 21]
    assert [p['page'] for _, p in session.calls] == [0, 1, 2]
    assert all(p['page_size'] == 2 for _, p in session.calls)


def test_custom_recipes_fetched_from_url():
    records = [{'name': 'Gem', 'output_item_id': 35, 'output_item_count': 1, 'ingredients': []}]
    client, session, bucket = make_client(lambda url, params: DummyResp(200, records))

    assert client.get_custom_recipes('https://recipes.example.test/recipes.json') == records
    assert session.calls == [('https://recipes.example.test/recipes.json', {})]
    assert bucket.acquired == 1


@pytest.mark.parametrize("resp", [
    DummyResp(404, text="missing"),
    DummyResp(200, ValueError("bad json")),
    DummyResp(200, {'recipes': []}),
])
def test_custom_recipe_errors_raise(resp):
    client, _, _ = make_client(lambda url, params: resp)
    with pytest.raises(GW2APIError):
        client.get_custom_recipes('https://recipes.example.test/recipes.json')
