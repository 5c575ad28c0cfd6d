from conftest import animal_doc
from pawreels.sync.dedup import find_duplicates
from pawreels.sync.documents import (
    breed_key,
    extract_embed_src,
    extract_video_url,
    is_video_eligible,
    parse_listings,
)

BLOCKED = ["youtube", "vimeo", "facebook"]


def test_embed_src_takes_first_quoted_value():
    assert extract_embed_src('<iframe src="https://a.example/x.mp4" src="b"></iframe>') == (
        "https://a.example/x.mp4"
    )
    assert extract_embed_src("<video src='https://b.example/y.mp4'>") == "https://b.example/y.mp4"
    assert extract_embed_src("<iframe width=600></iframe>") is None
    assert extract_embed_src(None) is None


def test_video_url_only_considers_first_video():
    videos = [{"embed": "<div></div>"}, {"embed": '<iframe src="https://c.example/z"></iframe>'}]
    assert extract_video_url(videos) is None
    assert extract_video_url([]) is None


def test_blocked_hosts_are_not_eligible():
    ok, youtube, none = parse_listings(
        [
            animal_doc(1),
            animal_doc(2, videos=[{"embed": '<iframe src="https://www.youtube.com/embed/abc">'}]),
            animal_doc(3, videos=[]),
        ]
    )
    assert is_video_eligible(ok, BLOCKED)
    assert not is_video_eligible(youtube, BLOCKED)
    assert not is_video_eligible(none, BLOCKED)


def test_parse_listings_skips_unusable_items():
    listings = parse_listings([{"name": "no id"}, {"id": "abc"}, {**animal_doc(4), "attributes": None}])
    assert [listing.id for listing in listings] == [4]
    assert listings[0].address_city_state() == ("Denver", "CO")


def test_breed_key_ignores_order_and_case():
    a = breed_key({"primary": "Lab", "secondary": "Mix"})
    b = breed_key({"secondary": "mix", "primary": "lab"})
    assert a == b
    assert a != breed_key({"primary": "Lab", "secondary": "Poodle"})


def test_duplicates_keep_lowest_id():
    rows = [
        (10, "Rex", "Dog", {"primary": "Lab", "secondary": "Mix"}),
        (42, "Rex", "Dog", {"secondary": "mix", "primary": "lab"}),
        (43, "Rex", "Dog", {"primary": "Beagle"}),
    ]
    assert find_duplicates(rows) == [42]
