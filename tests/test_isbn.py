from __future__ import annotations

import unittest

from isbn import amazon_book_url, clean_isbn, get_isbn10, isbn13_to_isbn10


class IsbnConversionTests(unittest.TestCase):
    def test_clean_strips_hyphens_and_spaces(self) -> None:
        self.assertEqual(clean_isbn("978-0-441 01359-3"), "9780441013593")
        self.assertEqual(clean_isbn(None), "")

    def test_converts_978_isbns(self) -> None:
        self.assertEqual(isbn13_to_isbn10("9780441013593"), "0441013597")
        self.assertEqual(isbn13_to_isbn10("978-0-306-40615-7"), "0306406152")

    def test_check_digit_edge_values(self) -> None:
        self.assertEqual(isbn13_to_isbn10("9780804429573"), "080442957X")
        self.assertEqual(isbn13_to_isbn10("9780000000002"), "0000000000")

    def test_rejects_non_convertible_values(self) -> None:
        self.assertIsNone(isbn13_to_isbn10("9791032305690"))
        self.assertIsNone(isbn13_to_isbn10("97804410135"))
        self.assertIsNone(isbn13_to_isbn10("978044101359A"))

    def test_get_isbn10(self) -> None:
        self.assertEqual(get_isbn10("0441013597"), "0441013597")
        self.assertEqual(get_isbn10("9780441013593"), "0441013597")
        self.assertIsNone(get_isbn10("12345"))
        self.assertIsNone(get_isbn10(None))


class AmazonLinkTests(unittest.TestCase):
    def test_direct_product_link_when_isbn10_known(self) -> None:
        url = amazon_book_url("Dune", "Frank Herbert", "9780441013593", tag="shelvybooks-20")
        self.assertEqual(url, "https://www.amazon.com/dp/0441013597/?tag=shelvybooks-20")

    def test_search_link_fallback(self) -> None:
        url = amazon_book_url("Dune & Co", "Frank Herbert", "9791032305690", tag="shelvybooks-20")
        self.assertEqual(
            url,
            "https://www.amazon.com/s?k=Dune%20%26%20Co%20Frank%20Herbert&i=stripbooks&tag=shelvybooks-20",
        )
