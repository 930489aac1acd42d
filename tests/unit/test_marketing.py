from enrichment.marketing import contact_priorities, lead_score, prepare_marketing_data, target_segments
from enrichment.schemas import (
    BusinessInfo,
    ConsolidatedCompanyRecord,
    ContactInfo,
    Executive,
    MarketInfo,
    PeopleInfo,
    TechnologyInfo,
    WebsiteScrapeData,
)


def _record(**overrides):
    data = dict(
        company_name="Acme",
        website="https://acme.com",
        contact=ContactInfo(email="info@acme.com", phone="+14155550100"),
        business=BusinessInfo(industry="Aerospace", employee_count=250, funding=["25M"]),
        technology=TechnologyInfo(platforms=["AWS", "React", "Stripe", "HubSpot", "Shopify", "Vercel"]),
        people=PeopleInfo(executives=[
            Executive(name="Zed", title="Software Engineer"),
            Executive(name="Bob", title="Assistant to the CEO"),
            Executive(name="Ann", title="VP Sales", email="ann@acme.com"),
            Executive(name="Tom", title="CTO"),
            Executive(name="Jane", title="Founder & CEO", linkedin="https://linkedin.com/in/jane"),
        ]),
        market=MarketInfo(target_customers=["Startups"], geographic=["US"], competitors=["Apex"]),
    )
    data.update(overrides)
    return ConsolidatedCompanyRecord(**data)


def test_lead_score():
    assert lead_score(_record()) == 90
    big = _record(business=BusinessInfo(employee_range="1000-5000", funding=["25M"]))
    assert lead_score(big) == 100
    assert lead_score(ConsolidatedCompanyRecord(website="https://acme.com")) == 0


def test_target_segments():
    assert target_segments(_record()) == [
        "industry:Aerospace", "size:mid-market", "customer:Startups", "region:US", "funded",
    ]


def test_contact_priorities_rank_decision_makers():
    priorities = contact_priorities(_record())
    assert [(p.name, p.level) for p in priorities] == [
        ("Jane", "FOUNDER_CEO"), ("Tom", "C_SUITE"), ("Ann", "VP_PLUS"),
    ]
    assert priorities[0].linkedin == "https://linkedin.com/in/jane"
    assert priorities[0].email is None
    assert priorities[2].email == "ann@acme.com"


def test_prepare_marketing_data_merges_scraped_technologies():
    scrape = WebsiteScrapeData(url="https://acme.com", technologies=["React", "WordPress"])
    data = prepare_marketing_data(_record(), scrape)
    assert data.lead_score == 90
    assert data.tech_based_targeting[-1] == "uses:WordPress"
    assert data.tech_based_targeting.count("uses:React") == 1
    assert data.competitor_analysis == ["competitor:Apex"]
