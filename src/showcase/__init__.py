"""Website showcase social core: activities, follows, feed, stats and notifications."""
