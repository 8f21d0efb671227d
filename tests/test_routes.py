import unittest
from urllib.parse import parse_qs, urlparse

from origin_server import SEGMENT_BYTES, OriginServer, unused_local_url

from video_proxy import create_app
from video_proxy.api.routes_video_proxy import determine_content_type
from video_proxy.config import ProxyConfig

REFERER_URL = 'https://site.example.com/'


def _decode_proxy_url(proxied_url):
    parsed = urlparse(proxied_url)
    query = parse_qs(parsed.query)
    return parsed.path, query['url'][0], query['ref'][0]


class ContentTypeTests(unittest.TestCase):
    def test_upstream_content_type_wins(self):
        self.assertEqual(determine_content_type('video/iso.segment', 'https://a.example.com/x.ts'), 'video/iso.segment')

    def test_inferred_from_extension(self):
        cases = {
            'https://a.example.com/x.ts':            'video/MP2T',
            'https://a.example.com/x.TS?token=1':    'video/MP2T',
            'https://a.example.com/x.m4s':           'video/mp4',
            'https://a.example.com/x.webm':          'video/webm',
            'https://a.example.com/x.bin':           'application/octet-stream',
        }
        for url, expected in cases.items():
            with self.subTest(url=url):
                self.assertEqual(determine_content_type(None, url), expected)


class RoutesTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.origin = OriginServer()
        await self.origin.start()
        self.app = create_app(ProxyConfig(timeout_ms=200))
        self.client = self.app.test_client()

    async def asyncTearDown(self):
        await self.origin.close()

    def assertCors(self, response):
        self.assertEqual(response.headers['Access-Control-Allow-Origin'], '*')
        self.assertEqual(response.headers['Access-Control-Allow-Methods'], 'GET, OPTIONS')
        self.assertEqual(response.headers['Access-Control-Allow-Headers'], 'Content-Type')
        self.assertEqual(response.headers['Access-Control-Max-Age'], '86400')


class StaticRouteTests(RoutesTestCase):
    async def test_health_and_root(self):
        for path in ('/', '/health'):
            with self.subTest(path=path):
                response = await self.client.get(path)
                self.assertEqual(response.status_code, 200)
                self.assertEqual(await response.get_json(), {
                    'status': 'ok',
                    'service': 'Video Proxy Worker',
                    'endpoints': ['/player/stream', '/segment'],
                })

    async def test_unknown_path(self):
        response = await self.client.get('/nope')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(await response.get_json(), {
            'error': 'Not found',
            'available_endpoints': ['/player/stream', '/segment'],
        })

    async def test_preflight_on_any_path(self):
        for path in ('/player/stream', '/segment', '/anything'):
            with self.subTest(path=path):
                response = await self.client.options(path)
                self.assertEqual(response.status_code, 204)
                self.assertEqual(await response.get_data(), b'')
                self.assertCors(response)

    async def test_other_methods_rejected(self):
        for method in ('post', 'put', 'delete'):
            with self.subTest(method=method):
                response = await getattr(self.client, method)('/segment')
                self.assertEqual(response.status_code, 405)
                self.assertEqual(await response.get_json(), {'error': 'Method not allowed'})


class PlaylistRouteTests(RoutesTestCase):
    async def test_missing_params_lists_all(self):
        response = await self.client.get('/player/stream')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(await response.get_json(), {
            'error': 'Missing required query parameters: url, ref',
            'required': ['url', 'ref'],
        })

    async def test_missing_single_param(self):
        response = await self.client.get('/player/stream', query_string={'url': 'https://cdn.example.com/a.m3u8'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual((await response.get_json())['required'], ['ref'])

    async def test_invalid_url(self):
        response = await self.client.get('/player/stream', query_string={'url': 'not-a-url', 'ref': REFERER_URL})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(await response.get_json(), {'error': 'Invalid URL: not-a-url'})

    async def test_playlist_is_rewritten(self):
        playlist_url = self.origin.url('/live/index.m3u8')
        response = await self.client.get('/player/stream', query_string={'url': playlist_url, 'ref': REFERER_URL})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers['Content-Type'], 'application/vnd.apple.mpegurl')
        self.assertCors(response)

        lines = (await response.get_data(as_text=True)).split('\n')
        self.assertEqual(lines[0], '#EXTM3U')
        self.assertEqual(lines[2], '#EXT-X-STREAM-INF:BANDWIDTH=1280000,RESOLUTION=1280x720')
        self.assertEqual(
            _decode_proxy_url(lines[3]),
            ('/player/stream', self.origin.url('/live/variant/720p.m3u8'), REFERER_URL)
        )
        self.assertEqual(
            _decode_proxy_url(lines[5]),
            ('/player/stream', 'https://cdn.example.com/1080p.m3u8', REFERER_URL)
        )

        upstream_request = self.origin.requests[-1]
        self.assertEqual(upstream_request.headers['Referer'], REFERER_URL)
        self.assertEqual(upstream_request.headers['Origin'], 'https://site.example.com')

    async def test_playlist_resolved_against_redirect_target(self):
        response = await self.client.get(
            '/player/stream',
            query_string={'url': self.origin.url('/redirect/index.m3u8'), 'ref': REFERER_URL},
        )
        self.assertEqual(response.status_code, 200)
        body = await response.get_data(as_text=True)
        segments = [line for line in body.split('\n') if line.startswith('/segment')]
        self.assertEqual(
            [_decode_proxy_url(line)[1] for line in segments],
            [self.origin.url('/moved/seg1.ts'), self.origin.url('/moved/seg2.ts')]
        )

    async def test_upstream_errors_are_mapped(self):
        for upstream_status, expected in ((403, 403), (404, 404), (429, 429), (503, 502), (500, 500)):
            with self.subTest(status=upstream_status):
                response = await self.client.get(
                    '/player/stream',
                    query_string={'url': self.origin.url(f'/status/{upstream_status}'), 'ref': REFERER_URL},
                )
                self.assertEqual(response.status_code, expected)
                self.assertEqual(response.headers['Access-Control-Allow-Origin'], '*')
                payload = await response.get_json()
                self.assertEqual(payload['error'], 'Failed to proxy M3U8 playlist')
                self.assertEqual(payload['status'], expected)
                self.assertTrue(payload['message'].startswith(f'HTTP {upstream_status}'))
                self.assertTrue(payload['timestamp'].endswith('Z'))

    async def test_timeout_maps_to_408(self):
        response = await self.client.get(
            '/player/stream',
            query_string={'url': self.origin.url('/slow'), 'ref': REFERER_URL},
        )
        self.assertEqual(response.status_code, 408)
        self.assertEqual((await response.get_json())['status'], 408)


class SegmentRouteTests(RoutesTestCase):
    async def test_segment_is_passed_through(self):
        response = await self.client.get(
            '/segment',
            query_string={'url': self.origin.url('/seg/001.ts'), 'ref': REFERER_URL},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(await response.get_data(), SEGMENT_BYTES)
        self.assertEqual(response.headers['Content-Type'], 'video/mp2t')
        self.assertEqual(response.headers['Cache-Control'], 'public, max-age=3600')
        self.assertEqual(response.headers['Accept-Ranges'], 'bytes')
        self.assertCors(response)

    async def test_missing_params(self):
        response = await self.client.get('/segment', query_string={'ref': REFERER_URL})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(await response.get_json(), {
            'error': 'Missing required query parameters: url',
            'required': ['url'],
        })

    async def test_invalid_referer(self):
        response = await self.client.get(
            '/segment',
            query_string={'url': self.origin.url('/seg/001.ts'), 'ref': '/relative'},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(await response.get_json(), {'error': 'Invalid URL: /relative'})

    async def test_upstream_404(self):
        response = await self.client.get(
            '/segment',
            query_string={'url': self.origin.url('/status/404'), 'ref': REFERER_URL},
        )
        self.assertEqual(response.status_code, 404)
        payload = await response.get_json()
        self.assertEqual(payload['status'], 404)
        self.assertEqual(payload['error'], 'Failed to fetch video segment')
        self.assertEqual(response.headers['Access-Control-Allow-Origin'], '*')

    async def test_network_error_maps_to_500(self):
        response = await self.client.get(
            '/segment',
            query_string={'url': unused_local_url(), 'ref': REFERER_URL},
        )
        self.assertEqual(response.status_code, 500)
        self.assertEqual((await response.get_json())['status'], 500)


if __name__ == '__main__':
    unittest.main()
