"""X DOM selectors.

X changes its DOM often; when scraping breaks, this file is the place to
update. The extraction script receives `EXTRACT_SELECTORS` as an argument
and holds no selectors of its own.
"""

from __future__ import annotations

from pathlib import Path


TWEET_ARTICLE = 'article[data-testid="tweet"]'

# Tweet content
TWEET_TEXT = '[data-testid="tweetText"]'
TWEET_AUTHOR = '[data-testid="User-Name"]'
TWEET_LINK = 'a[href*="/status/"]'
TWEET_MEDIA = '[data-testid="tweetPhoto"] img, [data-testid="videoPlayer"] video'
TWEET_SOCIAL_CONTEXT = '[data-testid="socialContext"]'
TWEET_QUOTE = '[data-testid="quoteTweet"]'
TWEET_SHOW_MORE = '[data-testid="tweet-text-show-more-link"]'

# Engagement buttons; the count is read from their aria-label
METRIC_LIKES = '[data-testid="like"]'
METRIC_REPOSTS = '[data-testid="retweet"]'
METRIC_REPLIES = '[data-testid="reply"]'

WAIT_FOR_TWEETS = TWEET_ARTICLE

HOME_URL = "https://x.com/home"

EXTRACT_SELECTORS = {
    "article": TWEET_ARTICLE,
    "text": TWEET_TEXT,
    "author": TWEET_AUTHOR,
    "link": TWEET_LINK,
    "media": TWEET_MEDIA,
    "socialContext": TWEET_SOCIAL_CONTEXT,
    "quote": TWEET_QUOTE,
    "likes": METRIC_LIKES,
    "reposts": METRIC_REPOSTS,
    "replies": METRIC_REPLIES,
}

_JS_DIR = Path(__file__).parent / "js"


def load_script(name: str) -> str:
    return (_JS_DIR / name).read_text(encoding="utf-8")
