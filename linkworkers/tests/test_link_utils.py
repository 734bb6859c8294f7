import math
import unittest
from fractions import Fraction
from unittest import mock

from linkworkers.lib.host_safety import classify_url
from linkworkers.lib import link_utils
from linkworkers.lib.link_defaults import DEFAULT_MAX_LINKS
from linkworkers.lib.link_utils import (
    extract_links_from_message,
    iter_candidate_urls,
    resolve_max_links,
    strip_markdown_links,
)


class TokenizerTests(unittest.TestCase):
    def test_strip_markdown_replaces_link_with_space(self):
        text = "see [here](https://good.example/a) now"
        self.assertEqual("see   now", strip_markdown_links(text))

    def test_markdown_label_url_is_not_scanned(self):
        text = "[https://label.example](https://target.example/x) and https://bare.example"
        self.assertEqual(["https://bare.example"], list(iter_candidate_urls(text)))

    def test_bare_urls_in_order_without_punctuation_trimming(self):
        text = "first https://a.example/x. then HTTP://B.example/y, done"
        self.assertEqual(
            ["https://a.example/x.", "HTTP://B.example/y,"],
            list(iter_candidate_urls(text)),
        )

    def test_empty_and_match_free_input(self):
        self.assertEqual([], list(iter_candidate_urls("")))
        self.assertEqual([], list(iter_candidate_urls("   ")))
        self.assertEqual([], list(iter_candidate_urls("no links, only www.example.com")))

    def test_whitespace_matches_chat_client_rules(self):
        self.assertEqual(
            ["https://a.example", "https://b.example"],
            list(iter_candidate_urls("https://a.example\ufeffhttps://b.example")),
        )
        self.assertEqual(
            ["https://a.example/\x1cx\x85y"],
            list(iter_candidate_urls("https://a.example/\x1cx\x85y")),
        )

    def test_candidates_are_a_single_pass_iterator(self):
        candidates = iter_candidate_urls("https://a.example https://b.example")
        self.assertEqual("https://a.example", next(candidates))
        self.assertEqual(["https://b.example"], list(candidates))
        self.assertEqual([], list(candidates))


class ResolveMaxLinksTests(unittest.TestCase):
    def test_positive_numbers_are_floored(self):
        self.assertEqual(5, resolve_max_links(5))
        self.assertEqual(2, resolve_max_links(2.9))
        self.assertEqual(4, resolve_max_links(Fraction(9, 2)))

    def test_invalid_values_fall_back_to_default(self):
        for value in (None, 0, -1, math.nan, math.inf, "5", True, [3]):
            self.assertEqual(DEFAULT_MAX_LINKS, resolve_max_links(value), value)


class ExtractLinksFromMessageTests(unittest.TestCase):
    def test_loopback_host_is_dropped(self):
        text = "check http://localhost:8080/x and https://example.com"
        self.assertEqual(["https://example.com"], extract_links_from_message(text))

    def test_markdown_target_is_not_double_counted(self):
        text = "see [here](https://good.example/a) and https://good.example/a again"
        self.assertEqual(["https://good.example/a"], extract_links_from_message(text))

    def test_markdown_only_link_is_not_extracted(self):
        self.assertEqual([], extract_links_from_message("read [docs](https://docs.example/x)"))

    def test_cap_keeps_first_links_in_source_order(self):
        text = " ".join(f"https://site{i}.example/" for i in range(1, 6))
        self.assertEqual(
            ["https://site1.example/", "https://site2.example/", "https://site3.example/"],
            extract_links_from_message(text, max_links=3),
        )

    def test_default_cap(self):
        text = " ".join(f"https://site{i}.example/" for i in range(10))
        self.assertEqual(DEFAULT_MAX_LINKS, len(extract_links_from_message(text)))

    def test_fractional_cap_below_one_returns_nothing(self):
        self.assertEqual([], extract_links_from_message("https://a.example", max_links=0.5))

    def test_metadata_address_is_blocked(self):
        self.assertEqual([], extract_links_from_message("metadata at http://169.254.169.254/latest/"))

    def test_private_range_blocked_public_ip_kept(self):
        text = "visit http://10.0.0.5 or http://8.8.8.8"
        self.assertEqual(["http://8.8.8.8"], extract_links_from_message(text))

    def test_stops_checking_links_once_cap_is_reached(self):
        text = " ".join(f"https://site{i}.example/" for i in range(5))
        with mock.patch.object(link_utils, "is_allowed_url", wraps=link_utils.is_allowed_url) as check:
            result = extract_links_from_message(text, max_links=2)
        self.assertEqual(["https://site0.example/", "https://site1.example/"], result)
        self.assertEqual(2, check.call_count)

    def test_malformed_international_hosts_are_dropped(self):
        self.assertEqual([], extract_links_from_message("https://xn--a.com/ and https://a.xn--/"))
        self.assertEqual(
            ["https://xn--bcher-kva.example/"],
            extract_links_from_message("https://xn--bcher-kva.example/"),
        )

    def test_bom_is_trimmed_from_message(self):
        self.assertEqual(["https://a.example"], extract_links_from_message("\ufeff https://a.example\ufeff"))

    def test_blocked_links_do_not_use_up_the_cap(self):
        text = "http://10.0.0.1 http://192.168.0.1 https://a.example https://b.example"
        self.assertEqual(
            ["https://a.example", "https://b.example"],
            extract_links_from_message(text, max_links=2),
        )

    def test_empty_and_non_text_messages(self):
        for message in ("", "   \n\t", None, 42, b"https://example.com"):
            self.assertEqual([], extract_links_from_message(message), message)

    def test_dedup_is_exact_string_match(self):
        text = "https://a.example https://a.example https://A.example"
        self.assertEqual(
            ["https://a.example", "https://A.example"],
            extract_links_from_message(text, max_links=10),
        )

    def test_returned_urls_are_raw_text(self):
        self.assertEqual(
            ["HTTPS://Example.com/Path"],
            extract_links_from_message("  go to HTTPS://Example.com/Path  "),
        )

    def test_adversarial_input_never_raises(self):
        messages = [
            "http://[::1 http://[ http://%zz https://:::: http://@@@",
            "[](http://) [x](https://) ((https://a.example)) ]]](http://b",
            "http://" + "a" * 5000,
            "https://\u0000evil https://\ud800x https://exa。mple",
        ]
        for message in messages:
            result = extract_links_from_message(message)
            self.assertIsInstance(result, list)

    def test_result_invariants(self):
        messages = [
            "a https://x.example b https://x.example c http://127.0.0.1 d https://y.example/p?q=1",
            "[lbl](https://m.example) https://m.example http://172.20.1.1 http://100.100.0.1 https://z.example",
            "https://one.example https://two.example https://three.example https://four.example",
            "HTTP://UPPER.example http://upper.example ftp://nope.example",
        ]
        for message in messages:
            for cap in (None, 1, 2, 10):
                result = extract_links_from_message(message, max_links=cap)
                self.assertLessEqual(len(result), resolve_max_links(cap))
                self.assertEqual(len(result), len(set(result)))
                for url in result:
                    self.assertTrue(classify_url(url).allowed, url)
                    self.assertTrue(url.lower().startswith(("http://", "https://")), url)

    def test_order_follows_source_text(self):
        text = "z https://c.example y https://a.example x https://b.example"
        self.assertEqual(
            ["https://c.example", "https://a.example", "https://b.example"],
            extract_links_from_message(text),
        )

    def test_extracting_a_returned_url_is_idempotent(self):
        text = "https://a.example/x?y=1 and http://8.8.4.4:8080/ and https://[2001:db8::2]/"
        for url in extract_links_from_message(text):
            self.assertEqual([url], extract_links_from_message(url))


if __name__ == "__main__":
    unittest.main()
