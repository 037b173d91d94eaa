"""Static catalog of career paths with interest filtering, search and ranking."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Literal

SortKey = Literal["roi", "competition", "salary"]


@dataclass(frozen=True, slots=True)
class CareerPath:
    id: int
    name: str
    category: str
    avg_salary: str
    competition: str
    competition_score: int
    growth: str
    skills: tuple[str, ...]
    duration: str
    roi: int
    demand_trend: str
    job_openings: str
    description: str
    top_roles: tuple[str, ...]
    certifications: tuple[str, ...]

    @property
    def salary_floor(self) -> int:
        digits = re.sub(r"[^0-9]", "", self.avg_salary.split("-", 1)[0])
        return int(digits) if digits else 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("skills", "top_roles", "certifications"):
            data[key] = list(data[key])
        return data


CAREER_PATHS: tuple[CareerPath, ...] = (
    CareerPath(
        1, "Data Science & AI", "Technology", "$95,000 - $140,000", "Medium", 60, "+35%",
        ("Python", "Machine Learning", "Statistics", "SQL"), "6-12 months", 95, "Rising Fast", "125,000+",
        "High demand across industries with AI revolution. Entry barrier lowered with bootcamps.",
        ("Data Scientist", "ML Engineer", "AI Researcher"),
        ("Google Data Analytics", "IBM Data Science", "AWS ML Specialty"),
    ),
    CareerPath(
        2, "Cybersecurity", "Technology", "$90,000 - $150,000", "Low", 35, "+33%",
        ("Network Security", "Ethical Hacking", "Cloud Security", "Compliance"), "4-8 months", 98,
        "Critical Shortage", "750,000+",
        "Severe talent shortage with increasing cyber threats. High job security.",
        ("Security Analyst", "Penetration Tester", "CISO"),
        ("CompTIA Security+", "CEH", "CISSP"),
    ),
    CareerPath(
        3, "Cloud Architecture (AWS/Azure)", "Technology", "$110,000 - $160,000", "Low-Medium", 45, "+28%",
        ("AWS", "Azure", "DevOps", "Kubernetes"), "5-10 months", 92, "Extremely High", "200,000+",
        "Cloud migration is mandatory for businesses. Shortage of certified professionals.",
        ("Cloud Architect", "DevOps Engineer", "Solutions Architect"),
        ("AWS Solutions Architect", "Azure Administrator", "GCP Professional"),
    ),
    CareerPath(
        4, "UX/UI Design", "Design", "$70,000 - $120,000", "Medium-High", 65, "+22%",
        ("Figma", "User Research", "Prototyping", "Design Thinking"), "3-6 months", 78, "Steady Growth",
        "85,000+", "Every digital product needs UX. Portfolio matters more than degree.",
        ("UX Designer", "Product Designer", "UX Researcher"),
        ("Google UX Design", "Nielsen Norman Group", "Interaction Design Foundation"),
    ),
    CareerPath(
        5, "Blockchain Development", "Technology", "$100,000 - $180,000", "Low", 30, "+40%",
        ("Solidity", "Web3", "Smart Contracts", "Cryptography"), "6-12 months", 88, "Explosive Growth",
        "45,000+", "Very few qualified developers. Web3 and DeFi expansion creating massive demand.",
        ("Blockchain Developer", "Smart Contract Engineer", "Web3 Developer"),
        ("Certified Blockchain Developer", "Ethereum Developer", "Hyperledger"),
    ),
    CareerPath(
        6, "Digital Marketing & SEO", "Marketing", "$55,000 - $95,000", "High", 75, "+18%",
        ("SEO", "Google Ads", "Analytics", "Content Strategy"), "2-4 months", 65, "Moderate Growth",
        "150,000+", "Lower barrier to entry but saturated market. Specialization is key.",
        ("SEO Specialist", "Digital Marketer", "Growth Hacker"),
        ("Google Ads", "HubSpot", "Meta Blueprint"),
    ),
    CareerPath(
        7, "Healthcare Data Analytics", "Healthcare", "$85,000 - $130,000", "Low", 40, "+30%",
        ("Healthcare Systems", "Data Analysis", "HIPAA", "Clinical Informatics"), "6-9 months", 90,
        "Growing Fast", "60,000+",
        "Healthcare digitization creating huge demand. Niche field with less competition.",
        ("Healthcare Data Analyst", "Clinical Informaticist", "Health IT Specialist"),
        ("CAHIMS", "Healthcare Analytics", "Epic Certification"),
    ),
    CareerPath(
        8, "Renewable Energy Engineering", "Engineering", "$75,000 - $125,000", "Medium", 50, "+25%",
        ("Solar Systems", "Wind Energy", "Energy Modeling", "Sustainability"), "8-12 months", 82,
        "Accelerating", "55,000+",
        "Green energy transition is urgent. Government incentives boosting sector.",
        ("Solar Engineer", "Energy Analyst", "Sustainability Consultant"),
        ("NABCEP", "LEED", "Energy Manager"),
    ),
    CareerPath(
        9, "Product Management", "Business", "$95,000 - $150,000", "Medium-High", 68, "+20%",
        ("Product Strategy", "Agile", "User Stories", "Analytics"), "4-8 months", 75, "Strong Demand",
        "95,000+", "Tech companies need PMs, but field is competitive. Experience valued highly.",
        ("Product Manager", "Product Owner", "Technical PM"),
        ("Certified Scrum Product Owner", "Pragmatic Marketing", "Product School"),
    ),
    CareerPath(
        10, "Robotics & Automation", "Engineering", "$90,000 - $140,000", "Low-Medium", 42, "+24%",
        ("ROS", "Computer Vision", "Control Systems", "Python"), "8-14 months", 86, "Rising Steadily",
        "40,000+", "Manufacturing automation and AI robotics creating new opportunities.",
        ("Robotics Engineer", "Automation Specialist", "Controls Engineer"),
        ("Certified Automation Professional", "ROS Developer", "PLC Programming"),
    ),
)

INTERESTS = ("all", "Technology", "Design", "Marketing", "Healthcare", "Engineering", "Business")

_SORT_KEYS = {
    "roi": lambda path: -path.roi,
    "competition": lambda path: path.competition_score,
    "salary": lambda path: -path.salary_floor,
}


def filter_paths(
    interest: str = "all", text: str | None = None, sort_by: SortKey = "roi"
) -> list[CareerPath]:
    needle = (text or "").strip().lower()
    selected = [
        path
        for path in CAREER_PATHS
        if (interest == "all" or path.category == interest)
        and (
            not needle
            or needle in path.name.lower()
            or needle in path.category.lower()
            or any(needle in skill.lower() for skill in path.skills)
        )
    ]
    key = _SORT_KEYS.get(sort_by)
    return sorted(selected, key=key) if key is not None else selected
