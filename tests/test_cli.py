import io
from unittest import TestCase, mock

from reelmatch.cli import build_parser, cmd_enrich, cmd_link


class ParserTests(TestCase):
    def test_negative_limit_is_rejected(self) -> None:
        with mock.patch("sys.stderr", new_callable=io.StringIO) as stderr:
            with self.assertRaises(SystemExit):
                build_parser().parse_args(["enrich", "--limit", "-1"])
        self.assertIn("must be 0 or more", stderr.getvalue())

    def test_enrich_flags(self) -> None:
        args = build_parser().parse_args(["enrich", "--limit", "0", "--dry-run", "--min-confidence", "high"])
        self.assertEqual(args.limit, 0)
        self.assertTrue(args.dry_run)
        self.assertEqual(args.min_confidence, "high")
        self.assertIs(args.func, cmd_enrich)

    def test_min_confidence_choices(self) -> None:
        with mock.patch("sys.stderr", new_callable=io.StringIO):
            with self.assertRaises(SystemExit):
                build_parser().parse_args(["enrich", "--min-confidence", "low"])

    def test_link_arguments(self) -> None:
        args = build_parser().parse_args(["link", "archive-d", "tt0037638", "--verified"])
        self.assertEqual((args.key, args.imdb_id), ("archive-d", "tt0037638"))
        self.assertTrue(args.verified)
        self.assertFalse(args.fetch)
        self.assertIs(args.func, cmd_link)
