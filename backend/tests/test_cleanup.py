import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from catalog_sync.models.content import Episode, LiveChannel, Movie, Season, Series
from catalog_sync.models.user_data import ContentType, Favorite, WatchHistory
from catalog_sync.services.cleanup import cleanup_orphaned_user_data


def test_orphaned_user_data_is_removed(db, provider):
    channel = LiveChannel(provider_id=provider.id, stream_id=1, name="News")
    movie = Movie(provider_id=provider.id, stream_id=2, name="Heat")
    series = Series(provider_id=provider.id, series_id=3, name="The Wire")
    db.add_all([channel, movie, series])
    db.flush()
    season = Season(series_id=series.id, season_number=1)
    db.add(season)
    db.flush()
    episode = Episode(season_id=season.id, episode_num=1, episode_id=9001)
    db.add(episode)
    db.commit()

    db.add_all([
        Favorite(user_id=1, content_type=ContentType.LIVE_CHANNEL.value, content_id=channel.id),
        Favorite(user_id=1, content_type=ContentType.MOVIE.value, content_id=movie.id),
        Favorite(user_id=1, content_type=ContentType.SERIES.value, content_id=series.id),
        Favorite(user_id=1, content_type=ContentType.MOVIE.value, content_id=movie.id + 100),
        WatchHistory(user_id=1, content_type=ContentType.EPISODE.value, content_id=episode.id),
        WatchHistory(user_id=1, content_type=ContentType.EPISODE.value, content_id=episode.id + 100),
        WatchHistory(user_id=1, content_type=ContentType.LIVE_CHANNEL.value, content_id=channel.id + 100),
    ])
    db.commit()

    removed = cleanup_orphaned_user_data(db)

    assert removed == {"favorites": 1, "watch_history": 2}
    remaining = db.execute(select(Favorite.content_type, Favorite.content_id)).all()
    assert sorted(remaining) == sorted([
        ("live_channel", channel.id), ("movie", movie.id), ("series", series.id),
    ])
    assert db.scalars(select(WatchHistory.content_id)).all() == [episode.id]


def test_ids_are_checked_against_the_matching_type(db, provider):
    movie = Movie(provider_id=provider.id, stream_id=2, name="Heat")
    db.add(movie)
    db.commit()
    # Same numeric id, but no live channel exists
    db.add(Favorite(user_id=1, content_type=ContentType.LIVE_CHANNEL.value, content_id=movie.id))
    db.commit()

    assert cleanup_orphaned_user_data(db) == {"favorites": 1, "watch_history": 0}


def test_nothing_to_remove(db):
    assert cleanup_orphaned_user_data(db) == {"favorites": 0, "watch_history": 0}


def test_episode_favorites_and_series_history_are_swept(db, provider):
    series = Series(provider_id=provider.id, series_id=3, name="The Wire")
    db.add(series)
    db.flush()
    season = Season(series_id=series.id, season_number=1)
    db.add(season)
    db.flush()
    episode = Episode(season_id=season.id, episode_num=1, episode_id=9001)
    db.add(episode)
    db.commit()

    db.add_all([
        Favorite(user_id=1, content_type=ContentType.EPISODE.value, content_id=episode.id),
        Favorite(user_id=1, content_type=ContentType.EPISODE.value, content_id=episode.id + 100),
        WatchHistory(user_id=1, content_type=ContentType.SERIES.value, content_id=series.id),
        WatchHistory(user_id=1, content_type=ContentType.SERIES.value, content_id=series.id + 100),
    ])
    db.commit()

    assert cleanup_orphaned_user_data(db) == {"favorites": 1, "watch_history": 1}
    assert db.scalars(select(Favorite.content_id)).all() == [episode.id]
    assert db.scalars(select(WatchHistory.content_id)).all() == [series.id]


@pytest.mark.parametrize("model", [Favorite, WatchHistory])
def test_unknown_content_type_is_rejected(db, model):
    db.add(model(user_id=1, content_type="playlist", content_id=1))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()
