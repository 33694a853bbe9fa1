"""
Tests for image selection and the recent image buffer.
"""
import random
import threading
from pathlib import Path

import pytest

from conftest import FakeRng
from gallerica.selector import RecentBuffer, list_gallery_files, select_random_image


class TestRecentBuffer:

    def test_evicts_oldest(self):
        buffer = RecentBuffer(2)
        for name in ('a', 'b', 'c'):
            buffer.push(Path(name))

        assert buffer.items() == [Path('b'), Path('c')]
        assert Path('a') not in buffer
        assert 'c' in buffer

    def test_zero_capacity_keeps_nothing(self):
        buffer = RecentBuffer(0)
        buffer.push(Path('a'))

        assert len(buffer) == 0
        assert Path('a') not in buffer

    def test_negative_capacity_rejected(self):
        with pytest.raises(ValueError):
            RecentBuffer(-1)

    def test_resized_keeps_most_recent(self):
        buffer = RecentBuffer(4, [Path('a'), Path('b'), Path('c'), Path('d')])

        smaller = buffer.resized(2)
        larger = buffer.resized(6)

        assert smaller.capacity == 2
        assert smaller.items() == [Path('c'), Path('d')]
        assert larger.items() == [Path('a'), Path('b'), Path('c'), Path('d')]
        # The original is untouched
        assert buffer.items() == [Path('a'), Path('b'), Path('c'), Path('d')]

    def test_concurrent_pushes_respect_capacity(self):
        buffer = RecentBuffer(5)

        def worker(prefix):
            for i in range(200):
                buffer.push(Path(f"{prefix}-{i}"))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(buffer) == 5


class TestListGalleryFiles:

    def test_collects_regular_files_from_all_folders(self, gallery_dirs):
        files = list_gallery_files(gallery_dirs['cats'])

        assert sorted(f.name for f in files) == ['persian.jpg', 'siamese.png', 'tabby.jpg']

    def test_skips_unreadable_folders(self, gallery_dirs, tmp_path):
        files = list_gallery_files([tmp_path / 'does-not-exist'] + gallery_dirs['dogs'])

        assert [f.name for f in files] == ['beagle.jpg']

    def test_empty_folder(self, tmp_path):
        empty = tmp_path / 'empty'
        empty.mkdir()

        assert list_gallery_files([empty]) == []


class TestSelectRandomImage:

    def test_nothing_to_select(self, tmp_path):
        empty = tmp_path / 'empty'
        empty.mkdir()
        recent = RecentBuffer(3)

        assert select_random_image([empty, tmp_path / 'missing'], recent, 3) is None
        assert len(recent) == 0

    def test_avoids_recent_images(self, gallery_dirs):
        tabby = gallery_dirs['cats'][0] / 'tabby.jpg'
        persian = gallery_dirs['cats'][1] / 'persian.jpg'
        recent = RecentBuffer(3, [tabby])
        rng = FakeRng([tabby, tabby, persian])

        selection = select_random_image(gallery_dirs['cats'], recent, 3, rng)

        assert selection == persian
        assert rng.calls == 3
        assert recent.items() == [tabby, persian]

    def test_draws_with_replacement_until_budget_exhausted(self, gallery_dirs):
        tabby = gallery_dirs['cats'][0] / 'tabby.jpg'
        recent = RecentBuffer(3, [tabby])
        rng = FakeRng([tabby, tabby, tabby])

        selection = select_random_image(gallery_dirs['cats'], recent, 2, rng)

        # Three draws for a budget of two retries, the last one is accepted
        assert selection == tabby
        assert rng.calls == 3

    def test_terminates_with_fewer_files_than_retries(self, gallery_dirs):
        beagle = gallery_dirs['dogs'][0] / 'beagle.jpg'
        recent = RecentBuffer(3, [beagle])

        selection = select_random_image(gallery_dirs['dogs'], recent, 10, random.Random(7))

        assert selection == beagle

    def test_zero_retries_accepts_first_draw(self, gallery_dirs):
        tabby = gallery_dirs['cats'][0] / 'tabby.jpg'
        recent = RecentBuffer(3, [tabby])
        rng = FakeRng([tabby])

        selection = select_random_image(gallery_dirs['cats'], recent, 0, rng)

        assert selection == tabby
        assert rng.calls == 1
        # The buffer is still updated
        assert recent.items() == [tabby, tabby]

    def test_selection_is_a_candidate(self, gallery_dirs):
        candidates = set(list_gallery_files(gallery_dirs['cats']))
        recent = RecentBuffer(2)
        rng = random.Random(1234)

        for _ in range(20):
            assert select_random_image(gallery_dirs['cats'], recent, 3, rng) in candidates
        assert len(recent) == 2
