from harvester.relevance import score_relevance


def test_filter_disabled_accepts_everything():
    result = score_relevance("Gala", "", ["art"], filter_enabled=False)
    assert result.accepted
    assert result.score == 100
    assert result.matched_keywords == []


def test_domain_keywords_and_long_title_bonus():
    result = score_relevance("Sensory friendly family day", "", ["museum"], filter_enabled=True)
    assert result.matched_keywords == ["sensory", "family"]
    assert result.score == 15 + 15 + 5
    assert result.accepted


def test_source_keywords_score_eight():
    result = score_relevance("Art walk", "", ["art walk"], filter_enabled=True)
    assert result.matched_keywords == ["art walk"]
    assert result.score == 8
    assert not result.accepted


def test_description_counts_toward_matches():
    result = score_relevance("Open house", "Wheelchair accessible venue", [], filter_enabled=True)
    assert result.matched_keywords == ["accessible", "wheelchair"]
    assert result.score == 30
    assert result.accepted


def test_long_title_accepted_without_keywords():
    result = score_relevance("Board meeting", "", [], filter_enabled=True)
    assert result.score == 0
    assert result.accepted


def test_short_title_without_keywords_rejected():
    result = score_relevance("Gala", "", [], filter_enabled=True)
    assert not result.accepted


def test_source_keyword_repeating_domain_term_scores_both():
    result = score_relevance("Family Day", "", ["family"], filter_enabled=True)
    assert result.matched_keywords == ["family"]
    assert result.score == 15 + 8
    assert result.accepted


def test_score_is_clamped():
    title = "Accessible inclusive sensory autism adaptive family kids youth festival"
    result = score_relevance(title, "disability wheelchair children", ["festival"], filter_enabled=True)
    assert result.score == 100
