"""Schema v1 - Initial database schema.

This version includes tables for:
- Paid ads with moderation results and AI tags
- Impression and click events for engagement analytics
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'ads',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'author', 'type': 'TEXT', 'nullable': False},
                {'name': 'title', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT'},
                {'name': 'call_to_action', 'type': 'TEXT'},
                {'name': 'link_url', 'type': 'TEXT'},
                {'name': 'latitude', 'type': 'DOUBLE PRECISION'},
                {'name': 'longitude', 'type': 'DOUBLE PRECISION'},
                {'name': 'location', 'type': 'TEXT'},
                {'name': 'min_age', 'type': 'INT4'},
                {'name': 'max_age', 'type': 'INT4'},
                {'name': 'interests', 'type': 'TEXT'},
                {'name': 'tags', 'type': 'TEXT[]', 'nullable': False, 'default': "'{}'"},
                {'name': 'payment_tx', 'type': 'TEXT', 'nullable': False},
                {'name': 'media_key', 'type': 'TEXT'},
                {'name': 'moderation_score', 'type': 'INT4', 'nullable': False},
                {'name': 'visible', 'type': 'BOOLEAN', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'expiry', 'type': 'TIMESTAMPTZ', 'nullable': False}
            ],
            'checks': [
                {'name': 'ck_ads_score_range', 'expression': 'moderation_score BETWEEN 0 AND 10'},
                {'name': 'ck_ads_visible_score', 'expression': 'visible = (moderation_score >= 5)'},
                {'name': 'ck_ads_expiry', 'expression': 'expiry > created_at'},
                {'name': 'ck_ads_geo_pair', 'expression': '(latitude IS NULL) = (longitude IS NULL)'},
                {'name': 'ck_ads_age_range', 'expression': 'min_age IS NULL OR max_age IS NULL OR min_age <= max_age'},
                {'name': 'ck_ads_tags', 'expression': "moderation_score = 0 OR cardinality(tags) > 0"}
            ],
            'indexes': [
                {'name': 'idx_ads_payment_tx', 'columns': ['payment_tx'], 'unique': True},
                {'name': 'idx_ads_visible_expiry', 'columns': ['visible', 'expiry']},
                {'name': 'idx_ads_geo', 'columns': ['latitude', 'longitude'], 'where': 'latitude IS NOT NULL'},
                {
                    'name': 'idx_ads_interests',
                    'columns': ["(string_to_array(lower(interests), ','))"],
                    'using': 'GIN'
                },
                {'name': 'idx_ads_tags', 'columns': ['tags'], 'using': 'GIN'},
                {'name': 'idx_ads_created', 'columns': ['created_at']}
            ]
        },
        {
            'name': 'ad_impressions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'ad_id', 'type': 'UUID', 'nullable': False},
                {'name': 'source', 'type': 'TEXT', 'nullable': False},
                {'name': 'user_agent', 'type': 'TEXT'},
                {'name': 'referrer', 'type': 'TEXT'},
                {'name': 'ip_address', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {'name': 'ck_impressions_source', 'expression': "source IN ('app', 'mcp')"}
            ],
            'foreign_keys': [
                {'columns': ['ad_id'], 'references': 'ads(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_impressions_dedup', 'columns': ['ad_id', 'ip_address', 'user_agent', 'created_at']}
            ]
        },
        {
            'name': 'ad_clicks',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'ad_id', 'type': 'UUID', 'nullable': False},
                {'name': 'source', 'type': 'TEXT', 'nullable': False},
                {'name': 'user_agent', 'type': 'TEXT'},
                {'name': 'referrer', 'type': 'TEXT'},
                {'name': 'ip_address', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {'name': 'ck_clicks_source', 'expression': "source IN ('app', 'mcp')"}
            ],
            'foreign_keys': [
                {'columns': ['ad_id'], 'references': 'ads(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_clicks_dedup', 'columns': ['ad_id', 'ip_address', 'user_agent', 'created_at']}
            ]
        }
    ],
    'migrations': []
}
